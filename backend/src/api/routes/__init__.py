"""HTTP API route handlers."""

from . import library, queries

__all__ = ["library", "queries"]
