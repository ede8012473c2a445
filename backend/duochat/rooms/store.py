"""Storage-agnostic room persistence.

``RoomStore`` keeps room membership and hands out one ``MessageLog`` per
room. The log is append-only apart from deletion marks and hard clears;
hiding deleted messages is a view concern (see ``visible_history``).

All methods are coroutines so a durable backend can suspend on I/O. Any
I/O failure must surface as :class:`~duochat.errors.StorageUnavailable`.

Usage:
    store = InMemoryRoomStore()
    room = await store.get_or_create_room(room_id)
    await store.add_participant(room_id, "alice")
    log = store.message_log(room_id)
    await log.append(message)
"""
from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional

from duochat.errors import NotFound

from .identity import room_participants
from .schemas import Message, Room


class MessageLog(ABC):
    """Ordered message sequence of a single room."""

    def __init__(self, room_id: str) -> None:
        self.room_id = room_id

    @abstractmethod
    async def append(self, message: Message) -> bool:
        """Append ``message``; return False (and change nothing) if its id exists."""

    @abstractmethod
    async def get(self, message_id: str) -> Optional[Message]:
        """Return the message with ``message_id`` or None."""

    @abstractmethod
    async def mark_deleted_for(
        self, message_id: str, account_ids: Iterable[str], for_everyone: bool
    ) -> List[str]:
        """Hide a message for some accounts.

        With ``for_everyone`` the message is hidden for both accounts of the
        room's pair, joined or not, and ``account_ids`` is ignored.

        Returns:
            The account ids named by this deletion.

        Raises:
            NotFound: If no message with ``message_id`` exists in this room.
        """

    @abstractmethod
    async def mark_authored_deleted(self, author_id: str) -> List[str]:
        """Hide every message by ``author_id`` for everyone, in one operation.

        Returns:
            Ids of the messages whose ``deletedFor`` changed.
        """

    @abstractmethod
    async def clear(self) -> None:
        """Physically remove every message of the room."""

    @abstractmethod
    async def history(self) -> List[Message]:
        """Return all messages in append order, soft-deleted ones included."""

    def everyone(self, participants: Iterable[str]) -> List[str]:
        """Stored participants plus the pair encoded in the room id.

        A partner who has not joined yet is not in ``participants`` but must
        still lose sight of messages deleted for everyone.
        """
        return merge_ids(list(participants), room_participants(self.room_id))


class RoomStore(ABC):
    """Room membership plus access to each room's :class:`MessageLog`."""

    @abstractmethod
    async def get_or_create_room(self, room_id: str) -> Room:
        """Return the room, creating and persisting an empty one if unseen."""

    @abstractmethod
    async def get_room(self, room_id: str) -> Optional[Room]:
        """Return the room or None without creating it."""

    @abstractmethod
    async def add_participant(self, room_id: str, account_id: str) -> None:
        """Record ``account_id`` as a participant; no-op if already present."""

    @abstractmethod
    async def delete_room(self, room_id: str) -> None:
        """Hard-delete membership and log of a room."""

    @abstractmethod
    async def rooms_for(self, account_id: str) -> List[str]:
        """Ids of every room ``account_id`` participates in."""

    @abstractmethod
    def message_log(self, room_id: str) -> MessageLog:
        """Return the log of ``room_id``."""

    async def close(self) -> None:
        """Release backend resources."""


def merge_ids(current: List[str], extra: Iterable[str]) -> List[str]:
    merged = list(current)
    for account_id in extra:
        if account_id not in merged:
            merged.append(account_id)
    return merged


# =============================================================================
# In-memory implementation
# =============================================================================


class InMemoryMessageLog(MessageLog):
    """Log backed by the owning :class:`InMemoryRoomStore` dictionaries."""

    def __init__(self, store: "InMemoryRoomStore", room_id: str) -> None:
        super().__init__(room_id)
        self._store = store

    def _messages(self) -> List[Message]:
        return self._store.messages.setdefault(self.room_id, [])

    def _find(self, message_id: str) -> Optional[Message]:
        for msg in self._store.messages.get(self.room_id, []):
            if msg.id == message_id:
                return msg
        return None

    async def append(self, message: Message) -> bool:
        if self._find(message.id) is not None:
            return False
        self._messages().append(message.model_copy(deep=True))
        return True

    async def get(self, message_id: str) -> Optional[Message]:
        msg = self._find(message_id)
        return msg.model_copy(deep=True) if msg else None

    async def mark_deleted_for(
        self, message_id: str, account_ids: Iterable[str], for_everyone: bool
    ) -> List[str]:
        msg = self._find(message_id)
        if msg is None:
            raise NotFound(f"Message {message_id} not found in room {self.room_id}")
        if for_everyone:
            account_ids = self.everyone(self._store.participants.get(self.room_id, []))
        named = merge_ids([], account_ids)
        msg.deletedFor = merge_ids(msg.deletedFor, named)
        return named

    async def mark_authored_deleted(self, author_id: str) -> List[str]:
        participants = self.everyone(self._store.participants.get(self.room_id, []))
        changed = []
        for msg in self._store.messages.get(self.room_id, []):
            if msg.sender != author_id:
                continue
            merged = merge_ids(msg.deletedFor, participants)
            if merged != msg.deletedFor:
                msg.deletedFor = merged
                changed.append(msg.id)
        return changed

    async def clear(self) -> None:
        if self.room_id in self._store.messages:
            self._store.messages[self.room_id] = []

    async def history(self) -> List[Message]:
        return [msg.model_copy(deep=True) for msg in self._store.messages.get(self.room_id, [])]


class InMemoryRoomStore(RoomStore):
    """Process-local store; contents are lost on restart."""

    def __init__(self) -> None:
        # room_id -> ordered participant ids
        self.participants: Dict[str, List[str]] = {}
        # room_id -> messages in append order
        self.messages: Dict[str, List[Message]] = {}

    async def get_or_create_room(self, room_id: str) -> Room:
        if room_id not in self.participants:
            self.participants[room_id] = []
            self.messages[room_id] = []
        return Room(roomId=room_id, participants=list(self.participants[room_id]))

    async def get_room(self, room_id: str) -> Optional[Room]:
        if room_id not in self.participants:
            return None
        return Room(roomId=room_id, participants=list(self.participants[room_id]))

    async def add_participant(self, room_id: str, account_id: str) -> None:
        members = self.participants.setdefault(room_id, [])
        self.messages.setdefault(room_id, [])
        if account_id not in members:
            members.append(account_id)

    async def delete_room(self, room_id: str) -> None:
        self.participants.pop(room_id, None)
        self.messages.pop(room_id, None)

    async def rooms_for(self, account_id: str) -> List[str]:
        return [room_id for room_id, members in self.participants.items() if account_id in members]

    def message_log(self, room_id: str) -> MessageLog:
        return InMemoryMessageLog(self, room_id)
