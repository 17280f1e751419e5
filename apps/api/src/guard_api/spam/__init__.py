"""Registration spam check endpoints."""

from guard_api.spam.routes import router as spam_router

__all__ = ["spam_router"]
