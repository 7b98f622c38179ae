"""
API routes initialization.

This module aggregates all API routers and provides a single router
to include in the main application.
"""

from fastapi import APIRouter

from app.api.routes import channels, usage

# Create main API router
api_router = APIRouter()

# Channel sync, stats and search
api_router.include_router(channels.router)

# Usage quotas
api_router.include_router(usage.router)
