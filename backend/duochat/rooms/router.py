"""Room router providing the WebSocket endpoint and room HTTP routes.

This module provides:
    - WebSocket /ws: Real-time messaging (see ``protocol`` for frame types)
    - POST /api/messages/delete: Delete a message for self or everyone
    - GET /api/rooms/{room_id}/history: History as one account sees it
"""
import json
import logging
from typing import Optional

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .gateway import SessionGateway
from .protocol import DeliveryProtocol

logger = logging.getLogger(__name__)

router = APIRouter(tags=["rooms"])

_gateway: Optional[SessionGateway] = None
_protocol: Optional[DeliveryProtocol] = None


def set_gateway(gateway: SessionGateway, protocol: Optional[DeliveryProtocol] = None) -> None:
    """Install the process-wide gateway (called from the app lifespan)."""
    global _gateway, _protocol
    _gateway = gateway
    _protocol = protocol or DeliveryProtocol(gateway)


def get_gateway() -> SessionGateway:
    if _gateway is None:
        raise RuntimeError("Session gateway not initialised")
    return _gateway


def get_protocol() -> DeliveryProtocol:
    if _protocol is None:
        raise RuntimeError("Session gateway not initialised")
    return _protocol


class DeleteMessageRequest(BaseModel):
    roomId: str
    messageId: str
    userId: str
    forEveryone: bool = False


@router.post("/api/messages/delete")
async def delete_message(body: DeleteMessageRequest) -> JSONResponse:
    """Delete a message for the requesting user, or for everyone.

    Same semantics as the ``message:delete`` WebSocket frame: only the
    author may delete for everyone, and the deletion is broadcast to the
    room's live connections.

    Returns:
        JSON with ``ok`` and the account ids the message is hidden for.
    """
    delete_for = await get_gateway().delete_message(
        body.roomId, body.messageId, body.userId, body.forEveryone
    )
    return JSONResponse({"ok": True, "deleteFor": delete_for})


@router.get("/api/rooms/{room_id}/history")
async def get_room_history(
    room_id: str,
    accountId: str = Query(..., description="Account whose view of the history to return"),
) -> JSONResponse:
    """Get a room's history without the messages hidden for ``accountId``."""
    history = await get_gateway().visible_history(room_id, accountId)
    return JSONResponse({
        "ok": True,
        "roomId": room_id,
        "history": [msg.to_wire() for msg in history],
    })


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket) -> None:
    """WebSocket endpoint for real-time messaging.

    Protocol Flow:
        1. Client connects (no frames are sent until it joins a room)
        2. Client sends: {type: "join", roomId, account}
           → Server sends: {type: "room:history", roomId, history}
        3. Client sends: {type: "message", roomId, msg}
           → Server broadcasts: {type: "message", roomId, msg}
        4. Typing, reactions, deletes and clears as documented in ``protocol``
        5. On disconnect the connection leaves all rooms; membership and
           history are kept.
    """
    await websocket.accept()
    gateway = get_gateway()
    protocol = get_protocol()
    connection = gateway.connect(websocket)

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                data = json.loads(raw)
            except json.JSONDecodeError:
                await gateway.hub.send_to(connection, {
                    "type": "error",
                    "event": None,
                    "error": "InvalidMessage",
                    "detail": "Invalid message format: frame is not JSON",
                })
                continue

            logger.debug("[WS] %s received: type=%s", connection.id, data.get("type", "?") if isinstance(data, dict) else "?")
            try:
                await protocol.handle(connection, data)
            except WebSocketDisconnect:
                raise
            except Exception as exc:
                logger.exception(f"[WS] Unexpected error handling frame from {connection.id}: {exc}")
                await gateway.hub.send_to(connection, {
                    "type": "error",
                    "event": data.get("type") if isinstance(data, dict) else None,
                    "error": "InternalError",
                    "detail": "Internal server error",
                })

    except WebSocketDisconnect:
        logger.info(f"[WS] Client {connection.id} disconnected")
    finally:
        gateway.disconnect(connection)
