"""HTTP surface for the dependency engine."""

from .app import create_app

__all__ = ["create_app"]
