"""Order API for a small retail catalog."""

__version__ = "0.1.0"
