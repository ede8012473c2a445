"""Account router — registration and the admin approval workflow.

Endpoints:
    POST /api/register        - Register (first account becomes admin)
    POST /api/transfer-admin  - Hand the admin role to another account
    GET  /api/users           - List accounts
    POST /api/users/approve   - Approve a pending account
    POST /api/users/reject    - Remove an account and purge its rooms
    GET  /api/partner         - Chat partner and room id for an account
"""
import logging

from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse

from duochat.rooms.router import get_gateway

from .schemas import AccountIdRequest, RegisterRequest, TransferAdminRequest
from .service import AccountService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["accounts"])


def _service() -> AccountService:
    return AccountService.get_instance()


@router.post("/register")
async def register(body: RegisterRequest) -> JSONResponse:
    """Register an account, or return the existing account with that name.

    Args:
        body: Client-generated account id and display name.

    Returns:
        JSON with ``ok`` and the account.
    """
    account = _service().register(body.id, body.name)
    return JSONResponse({"ok": True, "user": account.model_dump(mode="json")})


@router.post("/transfer-admin")
async def transfer_admin(body: TransferAdminRequest) -> JSONResponse:
    """Transfer the admin role; the new admin is approved as a side effect."""
    _service().transfer_admin(body.currentAdminId, body.newAdminId)
    return JSONResponse({"ok": True})


@router.get("/users")
async def list_users() -> JSONResponse:
    users = _service().list_accounts()
    return JSONResponse({"ok": True, "users": [u.model_dump(mode="json") for u in users]})


@router.post("/users/approve")
async def approve_user(body: AccountIdRequest) -> JSONResponse:
    _service().approve(body.id)
    return JSONResponse({"ok": True})


@router.post("/users/reject")
async def reject_user(body: AccountIdRequest) -> JSONResponse:
    """Remove an account and hard-delete every room it belonged to.

    Returns:
        JSON with ``ok`` and the ids of the purged rooms.
    """
    removed = _service().reject(body.id)
    purged = await get_gateway().purge_account(body.id)
    logger.info("[accounts] Rejected %s (existed=%s), purged %d rooms", body.id, removed, len(purged))
    return JSONResponse({"ok": True, "purgedRooms": purged})


@router.get("/partner")
async def get_partner(userId: str = Query(..., description="Account asking for its partner")) -> JSONResponse:
    """Return who ``userId`` chats with and the room id of that pair.

    The admin is paired with the first approved user; users with the admin.
    """
    partner, room_id = _service().partner(userId)
    return JSONResponse({
        "ok": True,
        "partner": partner.model_dump(mode="json") if partner else None,
        "roomId": room_id,
    })
