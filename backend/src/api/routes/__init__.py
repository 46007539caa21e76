"""HTTP API route handlers."""

from . import maps

__all__ = ["maps"]
