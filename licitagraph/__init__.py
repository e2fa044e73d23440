"""Extraction unification for public procurement documents."""

__version__ = "0.1.0"
