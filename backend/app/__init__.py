"""User records service backend."""

__version__ = "0.1.0"
