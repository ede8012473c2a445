"""Deterministic room ids for two-party rooms.

A room id is the two account ids sorted by code point and joined with
``ROOM_ID_SEPARATOR``, so ``derive_room_id(a, b) == derive_room_id(b, a)``.
"""
from typing import Tuple

from duochat.errors import InvalidParticipants

ROOM_ID_SEPARATOR = "--"


def _check_account_id(account_id: str) -> None:
    if not isinstance(account_id, str) or not account_id:
        raise InvalidParticipants("Account id must be a non-empty string")
    if ROOM_ID_SEPARATOR in account_id:
        raise InvalidParticipants(
            f"Account id may not contain {ROOM_ID_SEPARATOR!r}: {account_id!r}"
        )


def derive_room_id(id_a: str, id_b: str) -> str:
    """Return the canonical room id for the unordered pair ``{id_a, id_b}``.

    Raises:
        InvalidParticipants: If the ids are equal (self-chat), empty, or
            contain the separator.
    """
    _check_account_id(id_a)
    _check_account_id(id_b)
    if id_a == id_b:
        raise InvalidParticipants("A room needs two distinct accounts")
    return ROOM_ID_SEPARATOR.join(sorted((id_a, id_b)))


def room_participants(room_id: str) -> Tuple[str, str]:
    """Split a room id back into its two account ids.

    Raises:
        InvalidParticipants: If ``room_id`` was not produced by
            :func:`derive_room_id`.
    """
    parts = room_id.split(ROOM_ID_SEPARATOR) if isinstance(room_id, str) else []
    if len(parts) != 2 or not all(parts):
        raise InvalidParticipants(f"Malformed room id: {room_id!r}")
    first, second = parts
    if derive_room_id(first, second) != room_id:
        raise InvalidParticipants(f"Room id is not canonical: {room_id!r}")
    return first, second
