"""Two-party rooms: identity, storage, live sessions and delivery protocol."""

from .duckdb_store import DuckDBRoomStore
from .gateway import SessionGateway
from .hub import Connection, ConnectionHub
from .identity import ROOM_ID_SEPARATOR, derive_room_id, room_participants
from .presence import PresenceFanout
from .protocol import DeliveryProtocol
from .schemas import FileReference, Message, ReplySnapshot, Room, visible_history
from .store import InMemoryRoomStore, MessageLog, RoomStore

__all__ = [
    "Connection",
    "ConnectionHub",
    "DeliveryProtocol",
    "DuckDBRoomStore",
    "FileReference",
    "InMemoryRoomStore",
    "Message",
    "MessageLog",
    "PresenceFanout",
    "ROOM_ID_SEPARATOR",
    "ReplySnapshot",
    "Room",
    "RoomStore",
    "SessionGateway",
    "derive_room_id",
    "room_participants",
    "visible_history",
]
