"""Qave process runtime."""

__version__ = "0.1.0"
