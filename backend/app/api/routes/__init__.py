"""
API route modules.

Import all route modules here for easy access.
"""

from app.api.routes import channels, usage

__all__ = ["channels", "usage"]
