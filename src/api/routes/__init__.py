"""
API Routes for EMPORIUM.
"""
from .auth import router as auth_router, public_router as auth_public_router
from .mfa import router as mfa_router
from .admin import router as admin_router, public_router as admin_public_router
from .health import router as health_router, status_router

__all__ = [
    "auth_router",
    "auth_public_router",
    "mfa_router",
    "admin_router",
    "admin_public_router",
    "health_router",
    "status_router",
]
