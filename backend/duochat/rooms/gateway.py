"""Session gateway: bridges persisted rooms to live subscriptions.

Key features:
    - Join handshake: room creation on first touch, idempotent membership,
      subscription and full history replay
    - Send with duplicate-id guard and broadcast to every subscriber,
      the sender's own connections included (clients dedupe by message id)
    - Soft delete for self / for everyone, bulk delete of one's own
      messages, hard clear and account purge

Concurrency:
    Every operation that reads or writes a room's log runs under that
    room's ``asyncio.Lock``, so append + broadcast pairs never interleave
    and a clear racing a send lands entirely before or after it. Rooms do
    not share locks. Storage calls are bounded by ``storage_timeout`` and
    a timeout surfaces ``StorageUnavailable`` (releasing the lock).
    Serialized operations run in their own task behind ``asyncio.shield``:
    a client disconnecting mid-operation does not cancel the write.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

from duochat.errors import NotAuthorized, NotFound, StorageUnavailable

from .hub import Connection, ConnectionHub
from .identity import room_participants
from .schemas import FileReference, Message, Room, visible_history
from .store import RoomStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

# is_participant_authorized(account_id) -> bool
ParticipantAuthorizer = Callable[[str], bool]
# resolve_file_reference(upload_token) -> FileReference
FileReferenceResolver = Callable[[str], FileReference]


class SessionGateway:
    """Manages joins, sends and message lifecycle operations for all rooms."""

    def __init__(
        self,
        store: RoomStore,
        hub: Optional[ConnectionHub] = None,
        *,
        authorizer: Optional[ParticipantAuthorizer] = None,
        file_resolver: Optional[FileReferenceResolver] = None,
        storage_timeout: float = 5.0,
    ) -> None:
        self.store = store
        self.hub = hub or ConnectionHub()
        self.authorizer = authorizer
        self.file_resolver = file_resolver
        self.storage_timeout = storage_timeout
        self._room_locks: Dict[str, asyncio.Lock] = {}
        # room_id -> operations holding or waiting for the room lock
        self._lock_users: Dict[str, int] = {}

    # =========================================================================
    # Connections
    # =========================================================================

    def connect(self, websocket: Any) -> Connection:
        connection = Connection(websocket)
        logger.info(f"[Gateway] Connection {connection.id} opened")
        return connection

    def disconnect(self, connection: Connection) -> None:
        """Drop all live subscriptions; room membership and history stay."""
        rooms = sorted(connection.rooms)
        self.hub.unsubscribe_all(connection)
        logger.info(
            f"[Gateway] Connection {connection.id} (account={connection.account_id}) "
            f"closed, left rooms {rooms}"
        )

    # =========================================================================
    # Internals
    # =========================================================================

    def _lock_for(self, room_id: str) -> asyncio.Lock:
        lock = self._room_locks.get(room_id)
        if lock is None:
            lock = asyncio.Lock()
            self._room_locks[room_id] = lock
        return lock

    async def _storage(self, call: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(call, timeout=self.storage_timeout)
        except asyncio.TimeoutError as exc:
            logger.error(f"[Gateway] Storage call timed out after {self.storage_timeout}s")
            raise StorageUnavailable("Storage timed out", cause=exc) from exc

    async def _serialized(self, room_id: str, op: Callable[[], Awaitable[T]]) -> T:
        async def locked() -> T:
            lock = self._lock_for(room_id)
            self._lock_users[room_id] = self._lock_users.get(room_id, 0) + 1
            try:
                async with lock:
                    return await op()
            finally:
                self._lock_users[room_id] -= 1
                # Idle locks are dropped; the next operation creates a fresh one.
                if not self._lock_users[room_id]:
                    del self._lock_users[room_id]
                    self._room_locks.pop(room_id, None)

        task = asyncio.ensure_future(locked())
        return await asyncio.shield(task)

    def _check_authorized(self, account_id: str) -> None:
        if self.authorizer is not None and not self.authorizer(account_id):
            raise NotAuthorized(f"Account {account_id} is not approved for chat")

    async def _require_participant(self, room_id: str, account_id: str) -> Room:
        room = await self._storage(self.store.get_room(room_id))
        if room is None:
            raise NotFound(f"Room {room_id} not found")
        if account_id not in room.participants:
            raise NotAuthorized(f"Account {account_id} is not a participant of room {room_id}")
        return room

    # =========================================================================
    # Operations
    # =========================================================================

    async def join(
        self, room_id: str, account_id: str, connection: Optional[Connection] = None
    ) -> List[Message]:
        """Join ``account_id`` to ``room_id`` and return the full stored history.

        With a ``connection`` the history is also sent to it as a
        ``room:history`` frame, before any live message of the room.
        Safe to repeat (reconnects, duplicate joins): membership and
        subscriptions are idempotent. History includes soft-deleted messages;
        filtering them is the reader's job.

        Raises:
            InvalidParticipants: If ``room_id`` is not a canonical room id.
            NotAuthorized: If the account is not one of the two ids encoded
                in the room id, is not approved, or the connection is
                already bound to another account.
            StorageUnavailable: If persistence fails or times out.
        """
        if account_id not in room_participants(room_id):
            raise NotAuthorized(f"Account {account_id} is not a member of room {room_id}")
        self._check_authorized(account_id)
        if connection is not None and connection.account_id not in (None, account_id):
            raise NotAuthorized("Connection is bound to another account")

        async def op() -> List[Message]:
            room = await self._storage(self.store.get_or_create_room(room_id))
            if account_id not in room.participants:
                await self._storage(self.store.add_participant(room_id, account_id))
            # Subscribe before reading history: later sends wait for this
            # lock, so every message is either replayed or broadcast.
            if connection is not None:
                connection.account_id = account_id
                self.hub.subscribe(room_id, connection)
            history = await self._storage(self.store.message_log(room_id).history())
            if connection is not None:
                await self.hub.send_to(connection, {
                    "type": "room:history",
                    "roomId": room_id,
                    "history": [msg.to_wire() for msg in history],
                })
            return history

        history = await self._serialized(room_id, op)
        logger.info(
            f"[Gateway] {account_id} joined room {room_id} "
            f"({len(history)} messages, {self.hub.get_room_size(room_id)} connections)"
        )
        return history

    async def send(
        self, room_id: str, message: Message, connection: Optional[Connection] = None
    ) -> bool:
        """Persist ``message`` and broadcast it to the room.

        Returns:
            True if the message was appended, False if its id was already in
            the log. A duplicate changes nothing in storage; the stored copy
            is broadcast again so a retry after a timed-out write that still
            landed reaches the room.

        Raises:
            NotAuthorized: If the sender is not a participant of the room, or
                does not match the account bound to ``connection``.
            NotFound: If the message carries an unknown upload token.
            StorageUnavailable: If persistence fails or times out.
        """
        room_participants(room_id)
        if connection is not None and connection.account_id != message.sender:
            raise NotAuthorized("Messages may only be sent as the joined account")

        if message.file is None and message.uploadToken:
            if self.file_resolver is None:
                raise NotFound("File uploads are not available")
            message = message.model_copy(
                update={"file": self.file_resolver(message.uploadToken), "uploadToken": None}
            )

        async def op() -> bool:
            room = await self._storage(self.store.get_or_create_room(room_id))
            if message.sender not in room.participants:
                raise NotAuthorized(
                    f"Account {message.sender} is not a participant of room {room_id}"
                )
            log = self.store.message_log(room_id)
            appended = await self._storage(log.append(message))
            delivered = message
            if not appended:
                # A retry of a write that landed after timing out: deliver the
                # stored copy again, clients dedupe by id.
                delivered = await self._storage(log.get(message.id))
                logger.debug(f"[Gateway] Duplicate message {message.id} re-delivered in room {room_id}")
            await self.hub.broadcast(
                {"type": "message", "roomId": room_id, "msg": delivered.to_wire()},
                room_id,
            )
            return appended

        return await self._serialized(room_id, op)

    async def delete_message(
        self, room_id: str, message_id: str, requester_id: str, for_everyone: bool
    ) -> List[str]:
        """Soft-delete a message for the requester, or for everyone.

        Only the author may delete for everyone; any participant may delete
        for themselves.

        Returns:
            The account ids the message is now hidden for by this deletion.
        """

        async def op() -> List[str]:
            await self._require_participant(room_id, requester_id)
            log = self.store.message_log(room_id)
            message = await self._storage(log.get(message_id))
            if message is None:
                raise NotFound(f"Message {message_id} not found in room {room_id}")
            if for_everyone and message.sender != requester_id:
                raise NotAuthorized("Only the author can delete a message for everyone")
            delete_for = await self._storage(
                log.mark_deleted_for(message_id, [requester_id], for_everyone)
            )
            await self.hub.broadcast(
                {
                    "type": "message:deleted",
                    "roomId": room_id,
                    "messageId": message_id,
                    "deleteFor": delete_for,
                },
                room_id,
            )
            return delete_for

        delete_for = await self._serialized(room_id, op)
        logger.info(
            f"[Gateway] {requester_id} deleted {message_id} in room {room_id} "
            f"(forEveryone={for_everyone})"
        )
        return delete_for

    async def delete_all_from(self, room_id: str, requester_id: str) -> List[str]:
        """Delete every message the requester wrote in a room, for everyone."""

        async def op() -> List[str]:
            await self._require_participant(room_id, requester_id)
            changed = await self._storage(
                self.store.message_log(room_id).mark_authored_deleted(requester_id)
            )
            await self.hub.broadcast(
                {
                    "type": "chats:deleted",
                    "roomId": room_id,
                    "accountId": requester_id,
                    "messageIds": changed,
                },
                room_id,
            )
            return changed

        changed = await self._serialized(room_id, op)
        logger.info(f"[Gateway] {requester_id} deleted {len(changed)} messages in room {room_id}")
        return changed

    async def clear_room(self, room_id: str, initiator_id: str) -> None:
        """Hard-clear a room's history and tell its subscribers."""

        async def op() -> None:
            await self._require_participant(room_id, initiator_id)
            await self._storage(self.store.message_log(room_id).clear())
            await self.hub.broadcast({"type": "room:cleared", "roomId": room_id}, room_id)

        await self._serialized(room_id, op)
        logger.info(f"[Gateway] Room {room_id} cleared by {initiator_id}")

    async def purge_account(self, account_id: str) -> List[str]:
        """Delete every room of a removed account. Returns the purged room ids."""
        room_ids = await self._storage(self.store.rooms_for(account_id))
        for room_id in room_ids:
            async def op(room_id: str = room_id) -> None:
                await self._storage(self.store.delete_room(room_id))
                await self.hub.broadcast({"type": "room:cleared", "roomId": room_id}, room_id)

            await self._serialized(room_id, op)
        logger.info(f"[Gateway] Purged {len(room_ids)} rooms of account {account_id}")
        return room_ids

    async def visible_history(self, room_id: str, account_id: str) -> List[Message]:
        """History of a room as ``account_id`` should see it."""

        async def op() -> List[Message]:
            await self._require_participant(room_id, account_id)
            return await self._storage(self.store.message_log(room_id).history())

        return visible_history(await self._serialized(room_id, op), account_id)
