"""
HTTP transport for the inventory engine.
"""
from .app import create_app

__all__ = ["create_app"]
