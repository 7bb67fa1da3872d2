"""
API v1 package.

Contains versioned API routes for the registration lifecycle and retry engine.
"""

from src.api.v1.routes import router

__all__ = ["router"]
