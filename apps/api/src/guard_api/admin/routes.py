"""Admin spam management API routes.

Lists blocked addresses and blocks or unblocks an address by hand.
All routes require the X-Admin-Key header.
"""

import logging
from enum import Enum

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel

from guard_api.deps import get_guard, require_service_key
from spam_guard import IPReputation, SpamGuard

logger = logging.getLogger("guard-api.admin")

router = APIRouter(
    prefix="/admin/spam",
    tags=["Admin"],
    dependencies=[Depends(require_service_key)],
)


class IPAction(str, Enum):
    BLOCK = "block"
    UNBLOCK = "unblock"


class IPActionRequest(BaseModel):
    """Request body for a manual block or unblock."""

    ip: str
    action: IPAction


class IPActionResponse(BaseModel):
    success: bool
    message: str


class BlockedIPsResponse(BaseModel):
    blocked_ips: list[IPReputation]
    total: int


@router.get("/blocked-ips", response_model=BlockedIPsResponse)
async def list_blocked_ips(
    limit: int = Query(default=50, ge=1, le=100),
    guard: SpamGuard = Depends(get_guard),
):
    """Blocked and high-risk addresses, worst first."""
    blocked = await guard.ip.get_blocked_ips()
    return BlockedIPsResponse(blocked_ips=blocked[:limit], total=len(blocked))


@router.post("/ip", response_model=IPActionResponse)
async def update_ip(body: IPActionRequest, guard: SpamGuard = Depends(get_guard)):
    """Block or unblock an address."""
    if body.action == IPAction.BLOCK:
        reputation = await guard.ip.block(body.ip)
        if reputation is None:
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Reputation store unavailable",
            )
        logger.info(f"Admin blocked {body.ip} (score {reputation.score})")
        return IPActionResponse(success=True, message=f"IP {body.ip} is now blocked")

    if not await guard.ip.unblock(body.ip):
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Reputation store unavailable",
        )
    logger.info(f"Admin unblocked {body.ip}")
    return IPActionResponse(success=True, message=f"IP {body.ip} is unblocked")
