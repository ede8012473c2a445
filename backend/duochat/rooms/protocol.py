"""WebSocket delivery protocol.

Every frame is a JSON object with a ``type`` field.

Protocol Message Types (client -> server):
    - join: {roomId, account: {id, name}}
    - message: {roomId, msg}
    - typing: {roomId, accountId, value}
    - reaction: {roomId, messageId, byAccountId, reaction}
    - message:delete: {roomId, messageId, requesterId, forEveryone}
    - message:deleteAll: {roomId, requesterId}
    - clear: {roomId}

Server -> client:
    - room:history: {roomId, history} (joining connection only)
    - message: {roomId, msg} (room, sender included)
    - typing: {roomId, accountId, value} (room except sender)
    - reaction: {roomId, messageId, byAccountId, reaction} (room)
    - message:deleted: {roomId, messageId, deleteFor} (room)
    - chats:deleted: {roomId, accountId, messageIds} (room)
    - room:cleared: {roomId} (room)
    - error: {event, error, detail, roomId?, messageId?} (originating
      connection only; never broadcast, never retried by the server)
"""
import logging
from typing import Awaitable, Callable, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from duochat.errors import ChatError, InvalidMessage, NotAuthorized

from .gateway import SessionGateway
from .hub import Connection
from .presence import PresenceFanout
from .schemas import Message

logger = logging.getLogger(__name__)


# =============================================================================
# Inbound frames
# =============================================================================


class AccountRef(BaseModel):
    """The account a client joins as. Only ``id`` is used by the core."""
    model_config = ConfigDict(extra="ignore")

    id: str = Field(..., min_length=1)
    name: str = ""


class JoinFrame(BaseModel):
    roomId: str
    account: AccountRef


class MessageFrame(BaseModel):
    roomId: str
    msg: Message


class TypingFrame(BaseModel):
    roomId: str
    accountId: str
    value: bool = True


class ReactionFrame(BaseModel):
    roomId: str
    messageId: str
    byAccountId: str
    reaction: str = Field(..., min_length=1, max_length=32)


class DeleteFrame(BaseModel):
    roomId: str
    messageId: str
    requesterId: str
    forEveryone: bool = False


class DeleteAllFrame(BaseModel):
    roomId: str
    requesterId: str


class ClearFrame(BaseModel):
    roomId: str


# =============================================================================
# Dispatcher
# =============================================================================


class DeliveryProtocol:
    """Parses client frames and routes them to the gateway or presence fanout."""

    def __init__(
        self,
        gateway: SessionGateway,
        presence: Optional[PresenceFanout] = None,
        max_text_length: int = 10_000,
    ) -> None:
        self.gateway = gateway
        self.presence = presence or PresenceFanout(gateway.hub)
        self.max_text_length = max_text_length
        self._handlers: Dict[str, Callable[[Connection, dict], Awaitable[None]]] = {
            "join": self._on_join,
            "message": self._on_message,
            "typing": self._on_typing,
            "reaction": self._on_reaction,
            "message:delete": self._on_delete,
            "message:deleteAll": self._on_delete_all,
            "clear": self._on_clear,
        }

    async def handle(self, connection: Connection, data: dict) -> None:
        """Handle one inbound frame; errors go back to ``connection`` only."""
        event = data.get("type") if isinstance(data, dict) else None
        handler = self._handlers.get(event)
        try:
            if handler is None:
                raise InvalidMessage(f"Unknown frame type: {event!r}")
            await handler(connection, data)
        except ChatError as exc:
            logger.info(f"[WS] {event} from {connection.id} failed: {exc.code}: {exc.message}")
            await self._send_error(connection, event, exc, data)

    async def _send_error(
        self, connection: Connection, event: Optional[str], exc: ChatError, data
    ) -> None:
        reply = {"type": "error", "event": event, "error": exc.code, "detail": exc.message}
        if isinstance(data, dict):
            if isinstance(data.get("roomId"), str):
                reply["roomId"] = data["roomId"]
            message_id = data.get("messageId")
            if message_id is None and isinstance(data.get("msg"), dict):
                message_id = data["msg"].get("id")
            if isinstance(message_id, str):
                reply["messageId"] = message_id
        await self.gateway.hub.send_to(connection, reply)

    @staticmethod
    def _parse(model, data: dict):
        try:
            return model.model_validate(data)
        except ValidationError as exc:
            first = exc.errors()[0]
            location = ".".join(str(part) for part in first.get("loc", ()))
            raise InvalidMessage(f"Invalid message format: {location}: {first.get('msg')}") from exc

    @staticmethod
    def _require_identity(connection: Connection, account_id: str) -> None:
        if connection.account_id is None or connection.account_id != account_id:
            raise NotAuthorized("Frames may only act as the joined account")

    # --- handlers -----------------------------------------------------------

    async def _on_join(self, connection: Connection, data: dict) -> None:
        frame = self._parse(JoinFrame, data)
        await self.gateway.join(frame.roomId, frame.account.id, connection)

    async def _on_message(self, connection: Connection, data: dict) -> None:
        frame = self._parse(MessageFrame, data)
        msg = frame.msg
        if msg.text and len(msg.text) > self.max_text_length:
            raise InvalidMessage(f"Message text exceeds {self.max_text_length} characters")
        # deletion marks are server-owned
        msg = msg.model_copy(update={"deletedFor": []})
        await self.gateway.send(frame.roomId, msg, connection)

    async def _on_typing(self, connection: Connection, data: dict) -> None:
        frame = self._parse(TypingFrame, data)
        await self.presence.typing(frame.roomId, frame.accountId, frame.value, sender=connection)

    async def _on_reaction(self, connection: Connection, data: dict) -> None:
        frame = self._parse(ReactionFrame, data)
        await self.presence.reaction(
            frame.roomId, frame.messageId, frame.byAccountId, frame.reaction, sender=connection
        )

    async def _on_delete(self, connection: Connection, data: dict) -> None:
        frame = self._parse(DeleteFrame, data)
        self._require_identity(connection, frame.requesterId)
        await self.gateway.delete_message(
            frame.roomId, frame.messageId, frame.requesterId, frame.forEveryone
        )

    async def _on_delete_all(self, connection: Connection, data: dict) -> None:
        frame = self._parse(DeleteAllFrame, data)
        self._require_identity(connection, frame.requesterId)
        await self.gateway.delete_all_from(frame.roomId, frame.requesterId)

    async def _on_clear(self, connection: Connection, data: dict) -> None:
        frame = self._parse(ClearFrame, data)
        if connection.account_id is None:
            raise NotAuthorized("Join a room before clearing it")
        await self.gateway.clear_room(frame.roomId, connection.account_id)
