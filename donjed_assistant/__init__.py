"""DonJed Assistant: retrieval-augmented chat backend for the DonJed energy widget."""

__version__ = "0.1.0"
