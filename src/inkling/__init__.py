"""Inkling: reviewable AI suggestions for live HTML documents."""

__version__ = "0.1.0"

__all__ = ["__version__"]
