"""
VisitTrack CLI module
"""

from .app import app, main

__all__ = ["app", "main"]
