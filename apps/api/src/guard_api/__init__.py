"""API package for the registration spam guard.

This FastAPI application exposes:
- Timing tokens and registration checks (/spam)
- Admin IP reputation management (/admin/spam)
"""

from guard_api.main import app, create_app

__all__ = ["app", "create_app"]
