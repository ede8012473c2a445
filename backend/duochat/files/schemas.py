"""Pydantic schemas for chat attachments.

Messages never carry file bytes. A client uploads the file first, gets an
``uploadToken`` back, and sends a message carrying that token; the gateway
swaps it for a :class:`~duochat.rooms.schemas.FileReference`.
"""
import time
import uuid
from enum import Enum

from pydantic import BaseModel, Field


class FileType(str, Enum):
    """Coarse category the client uses to pick a preview."""
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    PDF = "pdf"
    OTHER = "other"


class FileMetadata(BaseModel):
    """One stored upload. ``id`` doubles as the upload token."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    uploader_id: str
    original_filename: str
    stored_filename: str
    file_type: FileType
    mime_type: str
    size_bytes: int
    file_url: str
    uploaded_at: float = Field(default_factory=time.time)


class FileUploadResponse(BaseModel):
    """Body of POST /api/upload."""
    ok: bool = True
    uploadToken: str
    fileName: str
    fileSize: int
    fileUrl: str
    fileType: FileType


# MIME major type -> category; application/pdf is matched exactly
_MAJOR_TYPES = {
    "image": FileType.IMAGE,
    "video": FileType.VIDEO,
    "audio": FileType.AUDIO,
}


def get_file_type(mime_type: str) -> FileType:
    """Categorize an upload by MIME type.

    >>> get_file_type("image/webp")
    <FileType.IMAGE: 'image'>
    >>> get_file_type("text/plain")
    <FileType.OTHER: 'other'>
    """
    mime_type = (mime_type or "").split(";", 1)[0].strip().lower()
    if mime_type == "application/pdf":
        return FileType.PDF
    return _MAJOR_TYPES.get(mime_type.split("/", 1)[0], FileType.OTHER)
