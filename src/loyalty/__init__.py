"""Loyalty platform authentication and token core."""

__version__ = "0.1.0"
