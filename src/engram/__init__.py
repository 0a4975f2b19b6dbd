"""Engram - local pattern learning and retrieval for coding agents."""

__version__ = "0.3.0"

__all__ = ["__version__"]
