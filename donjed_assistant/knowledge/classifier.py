"""Decide whether a user message warrants a knowledge base lookup."""

# Greetings and casual conversation
GREETINGS: tuple[str, ...] = (
    "hi",
    "hello",
    "hey",
    "good morning",
    "good afternoon",
    "good evening",
    "how are you",
)

# Product/service related keywords, matched as substrings
PRODUCT_KEYWORDS: tuple[str, ...] = (
    "price",
    "cost",
    "system",
    "solar",
    "panel",
    "battery",
    "inverter",
    "installation",
    "warranty",
    "maintenance",
    "product",
    "service",
    "kw",
    "kwh",
    "watt",
    "power",
    "energy",
    "donjed",
    "appliance",
    "ac",
    "air conditioner",
    "refrigerator",
    "rain",
    "weather",
    "cloudy",
)


def is_greeting(query: str) -> bool:
    """Check for a bare greeting or a greeting followed by a space.

    "hi, what's the price" is not a greeting (comma right after "hi"),
    while "hi there, what's your price list" is.
    """
    normalized = query.strip().lower()
    return any(
        normalized == greeting or normalized.startswith(greeting + " ")
        for greeting in GREETINGS
    )


def is_document_query(query: str) -> bool:
    """Determine if a query is likely to be answered by the knowledge base."""
    if is_greeting(query):
        return False

    normalized = query.strip().lower()
    return any(keyword in normalized for keyword in PRODUCT_KEYWORDS)
