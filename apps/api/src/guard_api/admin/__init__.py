"""Admin endpoints for IP reputation management."""

from guard_api.admin.routes import router as admin_router

__all__ = ["admin_router"]
