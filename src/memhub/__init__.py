"""Shared knowledge store with a retention lifecycle engine."""

__version__ = "0.1.0"
