"""Ephemeral room signals: typing indicators and reactions.

Nothing here touches storage. Signals for a room the sending connection
has not joined, or claiming another account, are dropped.
"""
import logging
from typing import Optional

from .hub import Connection, ConnectionHub

logger = logging.getLogger(__name__)


class PresenceFanout:
    """Fans typing and reaction signals out to a room's live subscribers."""

    def __init__(self, hub: ConnectionHub) -> None:
        self.hub = hub

    def _accepts(self, room_id: str, account_id: str, sender: Optional[Connection]) -> bool:
        if sender is None:
            return True
        if sender.account_id != account_id or not self.hub.is_subscribed(room_id, sender):
            logger.debug(
                f"[Presence] Dropped signal for room {room_id} from {sender.id} "
                f"claiming account {account_id}"
            )
            return False
        return True

    async def typing(
        self, room_id: str, account_id: str, is_typing: bool,
        sender: Optional[Connection] = None,
    ) -> bool:
        """Tell everyone in the room except ``sender`` that ``account_id`` is typing."""
        if not self._accepts(room_id, account_id, sender):
            return False
        message = {"type": "typing", "roomId": room_id, "accountId": account_id, "value": is_typing}
        if sender is None:
            await self.hub.broadcast(message, room_id)
        else:
            await self.hub.broadcast_except(message, room_id, exclude=sender)
        return True

    async def reaction(
        self, room_id: str, message_id: str, by_account_id: str, reaction: str,
        sender: Optional[Connection] = None,
    ) -> bool:
        """Broadcast a reaction to the whole room, sender included."""
        if not self._accepts(room_id, by_account_id, sender):
            return False
        await self.hub.broadcast(
            {
                "type": "reaction",
                "roomId": room_id,
                "messageId": message_id,
                "byAccountId": by_account_id,
                "reaction": reaction,
            },
            room_id,
        )
        return True
