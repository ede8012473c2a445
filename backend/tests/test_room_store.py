"""Contract tests run against every RoomStore implementation."""
import pytest

from duochat.errors import NotFound
from duochat.rooms.schemas import FileReference, Message, ReplySnapshot, visible_history


ROOM = "u1--u2"


def make_message(msg_id: str, sender: str = "u1", text: str = "hi", **kwargs) -> Message:
    return Message(id=msg_id, sender=sender, name=sender.upper(), text=text, **kwargs)


async def room_with_participants(store, *accounts):
    await store.get_or_create_room(ROOM)
    for account in accounts:
        await store.add_participant(ROOM, account)
    return store.message_log(ROOM)


class TestRooms:
    @pytest.mark.asyncio
    async def test_get_or_create_is_idempotent(self, room_store):
        first = await room_store.get_or_create_room(ROOM)
        second = await room_store.get_or_create_room(ROOM)
        assert first.roomId == second.roomId == ROOM
        assert first.participants == second.participants == []

    @pytest.mark.asyncio
    async def test_get_room_does_not_create(self, room_store):
        assert await room_store.get_room(ROOM) is None
        await room_store.get_or_create_room(ROOM)
        assert (await room_store.get_room(ROOM)).roomId == ROOM

    @pytest.mark.asyncio
    async def test_add_participant_is_idempotent(self, room_store):
        await room_with_participants(room_store, "u1", "u2", "u1")
        room = await room_store.get_room(ROOM)
        assert room.participants == ["u1", "u2"]

    @pytest.mark.asyncio
    async def test_rooms_for(self, room_store):
        await room_with_participants(room_store, "u1", "u2")
        await room_store.get_or_create_room("u1--u3")
        await room_store.add_participant("u1--u3", "u1")
        assert sorted(await room_store.rooms_for("u1")) == ["u1--u2", "u1--u3"]
        assert await room_store.rooms_for("u2") == [ROOM]
        assert await room_store.rooms_for("nobody") == []

    @pytest.mark.asyncio
    async def test_delete_room_removes_membership_and_log(self, room_store):
        log = await room_with_participants(room_store, "u1", "u2")
        await log.append(make_message("m1"))
        await room_store.delete_room(ROOM)
        assert await room_store.get_room(ROOM) is None
        assert await room_store.message_log(ROOM).history() == []
        assert await room_store.rooms_for("u1") == []


class TestMessageLog:
    @pytest.mark.asyncio
    async def test_append_preserves_order(self, room_store):
        log = await room_with_participants(room_store, "u1", "u2")
        for i in range(5):
            await log.append(make_message(f"m{i}", sender="u1" if i % 2 else "u2"))
        assert [m.id for m in await log.history()] == ["m0", "m1", "m2", "m3", "m4"]

    @pytest.mark.asyncio
    async def test_duplicate_id_is_absorbed(self, room_store):
        log = await room_with_participants(room_store, "u1", "u2")
        assert await log.append(make_message("m1", text="first")) is True
        assert await log.append(make_message("m1", text="retry")) is False
        history = await log.history()
        assert len(history) == 1
        assert history[0].text == "first"

    @pytest.mark.asyncio
    async def test_same_id_in_different_rooms_is_not_a_duplicate(self, room_store):
        log = await room_with_participants(room_store, "u1", "u2")
        await room_store.get_or_create_room("u1--u3")
        other = room_store.message_log("u1--u3")
        assert await log.append(make_message("m1")) is True
        assert await other.append(make_message("m1")) is True

    @pytest.mark.asyncio
    async def test_message_fields_survive_storage(self, room_store):
        log = await room_with_participants(room_store, "u1", "u2")
        reply = make_message(
            "m2", sender="u2", text="hello",
            replyTo=ReplySnapshot(id="m1", text="hi", name="U1"), ts=1700000000000,
        )
        upload = Message(
            id="m3", sender="u1",
            file=FileReference(fileName="a.pdf", fileSize=10, fileUrl="http://x/a.pdf"),
        )
        await log.append(reply)
        await log.append(upload)
        stored_reply, stored_upload = await log.history()
        assert stored_reply == reply
        assert stored_upload.file.fileName == "a.pdf"
        assert stored_upload.text is None

    @pytest.mark.asyncio
    async def test_delete_for_self_hides_only_for_requester(self, room_store):
        log = await room_with_participants(room_store, "u1", "u2")
        await log.append(make_message("m1"))
        assert await log.mark_deleted_for("m1", ["u1"], False) == ["u1"]
        history = await log.history()
        assert len(history) == 1
        assert visible_history(history, "u1") == []
        assert [m.id for m in visible_history(history, "u2")] == ["m1"]

    @pytest.mark.asyncio
    async def test_delete_for_everyone_uses_participants(self, room_store):
        log = await room_with_participants(room_store, "u1", "u2")
        await log.append(make_message("m1"))
        assert await log.mark_deleted_for("m1", ["u1"], True) == ["u1", "u2"]
        history = await log.history()
        assert visible_history(history, "u1") == []
        assert visible_history(history, "u2") == []
        assert len(history) == 1

    @pytest.mark.asyncio
    async def test_delete_for_everyone_covers_partner_who_joins_later(self, room_store):
        log = await room_with_participants(room_store, "u1")
        await log.append(make_message("m1"))
        await log.append(make_message("m2"))

        assert await log.mark_deleted_for("m1", ["u1"], True) == ["u1", "u2"]
        assert await log.mark_authored_deleted("u1") == ["m2"]
        await room_store.add_participant(ROOM, "u2")

        assert visible_history(await log.history(), "u2") == []

    @pytest.mark.asyncio
    async def test_deleted_for_only_grows(self, room_store):
        log = await room_with_participants(room_store, "u1", "u2")
        await log.append(make_message("m1"))
        await log.mark_deleted_for("m1", ["u2"], False)
        await log.mark_deleted_for("m1", ["u1"], False)
        await log.mark_deleted_for("m1", ["u2"], False)
        assert (await log.get("m1")).deletedFor == ["u2", "u1"]

    @pytest.mark.asyncio
    async def test_delete_unknown_message_raises_not_found(self, room_store):
        log = await room_with_participants(room_store, "u1", "u2")
        with pytest.raises(NotFound):
            await log.mark_deleted_for("missing", ["u1"], False)

    @pytest.mark.asyncio
    async def test_mark_authored_deleted(self, room_store):
        log = await room_with_participants(room_store, "u1", "u2")
        await log.append(make_message("m1", sender="u1"))
        await log.append(make_message("m2", sender="u2"))
        await log.append(make_message("m3", sender="u1"))
        await log.mark_deleted_for("m3", ["u1"], True)

        assert await log.mark_authored_deleted("u1") == ["m1"]
        visible = visible_history(await log.history(), "u2")
        assert [m.id for m in visible] == ["m2"]

    @pytest.mark.asyncio
    async def test_clear_then_append(self, room_store):
        log = await room_with_participants(room_store, "u1", "u2")
        await log.append(make_message("m1"))
        await log.append(make_message("m2"))
        await log.clear()
        assert await log.history() == []
        assert await log.append(make_message("m3")) is True
        assert [m.id for m in await log.history()] == ["m3"]
        assert (await room_store.get_room(ROOM)).participants == ["u1", "u2"]

    @pytest.mark.asyncio
    async def test_history_returns_copies(self, room_store):
        log = await room_with_participants(room_store, "u1", "u2")
        await log.append(make_message("m1"))
        history = await log.history()
        history[0].deletedFor.append("u1")
        assert (await log.get("m1")).deletedFor == []
