"""DuckDB-backed room store.

Database Schema:
    rooms:
        - room_id: Canonical room id (primary key)
    room_participants:
        - room_id, account_id: Membership (primary key on both)
        - seq: Insertion order, keeps participants in join order
    messages:
        - seq: Global insertion sequence, defines per-room order
        - room_id, id: Primary key (duplicate-send guard)
        - sender: Author account id (for bulk delete by author)
        - payload: Message JSON (wire field names)
        - deleted_for: JSON array of account ids

Thread Safety:
    A DuckDB connection is not thread-safe. Every statement runs in a
    worker thread (so the event loop never blocks on disk I/O) while
    holding ``_lock``, which serializes access to the single connection.
"""
import asyncio
import json
import logging
import threading
from typing import Callable, Iterable, List, Optional, TypeVar

import duckdb

from duochat.errors import NotFound, StorageUnavailable

from .schemas import Message, Room
from .store import MessageLog, RoomStore, merge_ids

logger = logging.getLogger(__name__)

T = TypeVar("T")

_SCHEMA = [
    "CREATE SEQUENCE IF NOT EXISTS messages_seq START 1",
    "CREATE SEQUENCE IF NOT EXISTS participants_seq START 1",
    """
    CREATE TABLE IF NOT EXISTS rooms (
        room_id VARCHAR PRIMARY KEY
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS room_participants (
        room_id    VARCHAR NOT NULL,
        account_id VARCHAR NOT NULL,
        seq        BIGINT DEFAULT nextval('participants_seq'),
        PRIMARY KEY (room_id, account_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS messages (
        seq         BIGINT DEFAULT nextval('messages_seq'),
        room_id     VARCHAR NOT NULL,
        id          VARCHAR NOT NULL,
        sender      VARCHAR NOT NULL,
        payload     VARCHAR NOT NULL,
        deleted_for VARCHAR NOT NULL DEFAULT '[]',
        PRIMARY KEY (room_id, id)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_messages_room ON messages(room_id)",
]


def _row_to_message(payload: str, deleted_for: str) -> Message:
    message = Message.model_validate_json(payload)
    message.deletedFor = json.loads(deleted_for)
    return message


class DuckDBRoomStore(RoomStore):
    """Room store persisted in a DuckDB file (or ``:memory:``)."""

    def __init__(self, db_path: str = "duochat.duckdb") -> None:
        self._db_path = db_path
        self._lock = threading.Lock()
        try:
            self._conn = duckdb.connect(db_path)
            for statement in _SCHEMA:
                self._conn.execute(statement)
        except duckdb.Error as exc:
            raise StorageUnavailable(f"Cannot open room database {db_path}", cause=exc) from exc
        logger.info("[Store] DuckDB room store ready at %s", db_path)

    async def _run(self, fn: Callable[[duckdb.DuckDBPyConnection], T]) -> T:
        def _locked() -> T:
            with self._lock:
                try:
                    return fn(self._conn)
                except duckdb.Error as exc:
                    logger.error("[Store] DuckDB error: %s", exc)
                    raise StorageUnavailable(str(exc), cause=exc) from exc

        return await asyncio.get_running_loop().run_in_executor(None, _locked)

    def _transaction(self, conn: duckdb.DuckDBPyConnection, body: Callable[[], T]) -> T:
        conn.begin()
        try:
            result = body()
        except BaseException:
            conn.rollback()
            raise
        conn.commit()
        return result

    # -------------------------------------------------------------------------
    # RoomStore
    # -------------------------------------------------------------------------

    @staticmethod
    def _participants(conn: duckdb.DuckDBPyConnection, room_id: str) -> List[str]:
        rows = conn.execute(
            "SELECT account_id FROM room_participants WHERE room_id = ? ORDER BY seq",
            [room_id],
        ).fetchall()
        return [row[0] for row in rows]

    async def get_or_create_room(self, room_id: str) -> Room:
        def op(conn):
            conn.execute("INSERT INTO rooms VALUES (?) ON CONFLICT DO NOTHING", [room_id])
            return Room(roomId=room_id, participants=self._participants(conn, room_id))

        return await self._run(op)

    async def get_room(self, room_id: str) -> Optional[Room]:
        def op(conn):
            row = conn.execute("SELECT room_id FROM rooms WHERE room_id = ?", [room_id]).fetchone()
            if row is None:
                return None
            return Room(roomId=room_id, participants=self._participants(conn, room_id))

        return await self._run(op)

    async def add_participant(self, room_id: str, account_id: str) -> None:
        def op(conn):
            def body():
                conn.execute("INSERT INTO rooms VALUES (?) ON CONFLICT DO NOTHING", [room_id])
                conn.execute(
                    "INSERT INTO room_participants (room_id, account_id) VALUES (?, ?) "
                    "ON CONFLICT DO NOTHING",
                    [room_id, account_id],
                )
            self._transaction(conn, body)

        await self._run(op)

    async def delete_room(self, room_id: str) -> None:
        def op(conn):
            def body():
                conn.execute("DELETE FROM messages WHERE room_id = ?", [room_id])
                conn.execute("DELETE FROM room_participants WHERE room_id = ?", [room_id])
                conn.execute("DELETE FROM rooms WHERE room_id = ?", [room_id])
            self._transaction(conn, body)

        await self._run(op)
        logger.info("[Store] Deleted room %s", room_id)

    async def rooms_for(self, account_id: str) -> List[str]:
        def op(conn):
            rows = conn.execute(
                "SELECT room_id FROM room_participants WHERE account_id = ? ORDER BY seq",
                [account_id],
            ).fetchall()
            return [row[0] for row in rows]

        return await self._run(op)

    def message_log(self, room_id: str) -> MessageLog:
        return DuckDBMessageLog(self, room_id)

    async def close(self) -> None:
        await self._run(lambda conn: conn.close())
        logger.info("[Store] DuckDB room store at %s closed", self._db_path)


class DuckDBMessageLog(MessageLog):
    """Message log rows of one room in the ``messages`` table."""

    def __init__(self, store: DuckDBRoomStore, room_id: str) -> None:
        super().__init__(room_id)
        self._store = store

    async def append(self, message: Message) -> bool:
        room_id = self.room_id

        def op(conn):
            exists = conn.execute(
                "SELECT 1 FROM messages WHERE room_id = ? AND id = ?", [room_id, message.id]
            ).fetchone()
            if exists:
                return False
            conn.execute(
                "INSERT INTO messages (room_id, id, sender, payload, deleted_for) "
                "VALUES (?, ?, ?, ?, ?)",
                [
                    room_id,
                    message.id,
                    message.sender,
                    message.model_dump_json(by_alias=True, exclude={"deletedFor"}),
                    json.dumps(message.deletedFor),
                ],
            )
            return True

        return await self._store._run(op)

    async def get(self, message_id: str) -> Optional[Message]:
        room_id = self.room_id

        def op(conn):
            row = conn.execute(
                "SELECT payload, deleted_for FROM messages WHERE room_id = ? AND id = ?",
                [room_id, message_id],
            ).fetchone()
            return _row_to_message(*row) if row else None

        return await self._store._run(op)

    async def mark_deleted_for(
        self, message_id: str, account_ids: Iterable[str], for_everyone: bool
    ) -> List[str]:
        room_id = self.room_id
        requested = list(account_ids)

        def op(conn):
            row = conn.execute(
                "SELECT deleted_for FROM messages WHERE room_id = ? AND id = ?",
                [room_id, message_id],
            ).fetchone()
            if row is None:
                raise NotFound(f"Message {message_id} not found in room {room_id}")
            if for_everyone:
                ids = self.everyone(DuckDBRoomStore._participants(conn, room_id))
            else:
                ids = requested
            named = merge_ids([], ids)
            conn.execute(
                "UPDATE messages SET deleted_for = ? WHERE room_id = ? AND id = ?",
                [json.dumps(merge_ids(json.loads(row[0]), named)), room_id, message_id],
            )
            return named

        return await self._store._run(op)

    async def mark_authored_deleted(self, author_id: str) -> List[str]:
        room_id = self.room_id

        def op(conn):
            def body():
                participants = self.everyone(DuckDBRoomStore._participants(conn, room_id))
                rows = conn.execute(
                    "SELECT id, deleted_for FROM messages WHERE room_id = ? AND sender = ? "
                    "ORDER BY seq",
                    [room_id, author_id],
                ).fetchall()
                changed = []
                for message_id, deleted_for in rows:
                    current = json.loads(deleted_for)
                    merged = merge_ids(current, participants)
                    if merged == current:
                        continue
                    conn.execute(
                        "UPDATE messages SET deleted_for = ? WHERE room_id = ? AND id = ?",
                        [json.dumps(merged), room_id, message_id],
                    )
                    changed.append(message_id)
                return changed
            return self._store._transaction(conn, body)

        return await self._store._run(op)

    async def clear(self) -> None:
        room_id = self.room_id
        await self._store._run(
            lambda conn: conn.execute("DELETE FROM messages WHERE room_id = ?", [room_id])
        )

    async def history(self) -> List[Message]:
        room_id = self.room_id

        def op(conn):
            rows = conn.execute(
                "SELECT payload, deleted_for FROM messages WHERE room_id = ? ORDER BY seq",
                [room_id],
            ).fetchall()
            return [_row_to_message(payload, deleted_for) for payload, deleted_for in rows]

        return await self._store._run(op)
