"""SalesBook sync version information."""

__version__ = "1.0.0"
