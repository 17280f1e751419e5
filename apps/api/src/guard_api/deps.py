"""FastAPI dependencies shared by the routers."""

import secrets

from fastapi import Header, HTTPException, Request, status

from spam_guard import SpamGuard, SpamGuardSettings


def get_guard(request: Request) -> SpamGuard:
    """The SpamGuard built during app startup."""
    return request.app.state.guard


def get_settings(request: Request) -> SpamGuardSettings:
    return request.app.state.settings


def get_client_ip(request: Request) -> str:
    """Client address of the request.

    X-Forwarded-For is only honoured when the direct peer is a configured
    trusted proxy. The hops are then read right to left and the first
    address that is not itself a trusted proxy is the client.
    """
    peer = request.client.host if request.client else "unknown"
    trusted = get_settings(request).trusted_proxies
    if peer not in trusted:
        return peer

    forwarded_for = request.headers.get("X-Forwarded-For")
    if not forwarded_for:
        return peer

    hops = [hop.strip() for hop in forwarded_for.split(",") if hop.strip()]
    for hop in reversed(hops):
        if hop not in trusted:
            return hop
    return hops[0] if hops else peer


def has_service_key(request: Request, key: str | None) -> bool:
    """Whether the given key matches the configured admin key."""
    expected = get_settings(request).admin_api_key
    return bool(expected and key and secrets.compare_digest(key, expected))


def require_service_key(
    request: Request,
    x_admin_key: str | None = Header(default=None),
) -> None:
    """Reject calls without the configured admin key.

    Endpoints are disabled entirely when no key is configured.
    """
    if not has_service_key(request, x_admin_key):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Forbidden",
        )
