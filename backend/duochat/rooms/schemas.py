"""Pydantic models for rooms and messages.

Field names follow the wire format (camelCase). The sender field is named
``sender`` in Python and ``from`` on the wire.
"""
import time
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


def now_ms() -> int:
    """Current time in epoch milliseconds."""
    return int(time.time() * 1000)


class FileReference(BaseModel):
    """Reference to an uploaded file; the bytes live in file storage."""
    fileName: str = Field(..., min_length=1)
    fileSize: int = Field(..., ge=0)
    fileUrl: str = Field(..., min_length=1)


class ReplySnapshot(BaseModel):
    """Copy of the message being replied to, taken at send time."""
    id: str = Field(..., min_length=1)
    text: Optional[str] = None
    name: str = ""


class Message(BaseModel):
    """A chat message as stored in a room's log and sent to clients.

    Exactly one of ``text`` (non-blank) or ``file`` carries the content.
    An inbound message may carry ``uploadToken`` instead of ``file``; the
    gateway resolves the token into a :class:`FileReference` before the
    message is stored.
    """
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., min_length=1, description="Client-generated message ID")
    sender: str = Field(..., alias="from", min_length=1, description="Sender account ID")
    name: str = Field(default="", description="Sender display name at send time")
    text: Optional[str] = None
    ts: int = Field(default_factory=now_ms, description="Send time, epoch milliseconds")
    replyTo: Optional[ReplySnapshot] = None
    file: Optional[FileReference] = None
    uploadToken: Optional[str] = Field(default=None, exclude=True)
    deletedFor: List[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _exactly_one_content(self) -> "Message":
        has_text = bool(self.text and self.text.strip())
        has_file = self.file is not None or bool(self.uploadToken)
        if has_text == has_file:
            raise ValueError("message needs exactly one of text or file")
        return self

    def is_visible_to(self, account_id: str) -> bool:
        return account_id not in self.deletedFor

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True)


class Room(BaseModel):
    """Membership record of a two-party room."""
    roomId: str
    participants: List[str] = Field(default_factory=list)


def visible_history(history: List[Message], account_id: str) -> List[Message]:
    """Drop messages that ``account_id`` has deleted (or that were deleted for everyone)."""
    return [msg for msg in history if msg.is_visible_to(account_id)]
