"""File storage service for duochat.

Handles file storage on disk and metadata tracking in DuckDB.
Files are stored in: {upload_dir}/{uuid}.{ext}

The messaging core only calls :meth:`FileStorageService.resolve_file_reference`.
"""
import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

import duckdb

from duochat.errors import InvalidMessage, NotFound
from duochat.rooms.schemas import FileReference

from .schemas import FileMetadata, FileType, get_file_type

logger = logging.getLogger(__name__)

_COLUMNS = (
    "id, uploader_id, original_filename, stored_filename, file_type, "
    "mime_type, size_bytes, file_url, uploaded_at"
)


class FileStorageService:
    """Service for managing file uploads and storage."""

    _instance: Optional["FileStorageService"] = None
    _upload_dir: str = "uploads"
    _db_path: str = "file_metadata.duckdb"
    _max_size_bytes: int = 1024 * 1024 * 1024

    def __init__(
        self,
        upload_dir: Optional[str] = None,
        db_path: Optional[str] = None,
        max_size_bytes: Optional[int] = None,
    ):
        if upload_dir:
            self._upload_dir = upload_dir
        if db_path:
            self._db_path = db_path
        if max_size_bytes:
            self._max_size_bytes = max_size_bytes

        self._connection: Optional[duckdb.DuckDBPyConnection] = None
        Path(self._upload_dir).mkdir(parents=True, exist_ok=True)
        self._initialize_db()

    @classmethod
    def get_instance(cls, **kwargs) -> "FileStorageService":
        """Get or create the singleton instance."""
        if cls._instance is None:
            cls._instance = cls(**kwargs)
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Reset the singleton instance (for testing)."""
        if cls._instance and cls._instance._connection:
            cls._instance._connection.close()
        cls._instance = None

    @property
    def max_size_bytes(self) -> int:
        return self._max_size_bytes

    def _get_connection(self) -> duckdb.DuckDBPyConnection:
        if self._connection is None:
            self._connection = duckdb.connect(self._db_path)
        return self._connection

    def _initialize_db(self) -> None:
        conn = self._get_connection()
        conn.execute("""
            CREATE TABLE IF NOT EXISTS file_metadata (
                id VARCHAR PRIMARY KEY,
                uploader_id VARCHAR NOT NULL,
                original_filename VARCHAR NOT NULL,
                stored_filename VARCHAR NOT NULL,
                file_type VARCHAR NOT NULL,
                mime_type VARCHAR NOT NULL,
                size_bytes BIGINT NOT NULL,
                file_url VARCHAR NOT NULL,
                uploaded_at TIMESTAMP NOT NULL
            )
        """)

    async def save_file(
        self,
        uploader_id: str,
        filename: str,
        content: bytes,
        mime_type: str,
        base_url: str,
    ) -> FileMetadata:
        """Save an uploaded file to disk and record metadata.

        Args:
            uploader_id: Account ID of the uploader
            filename: Original filename
            content: File content as bytes
            mime_type: MIME type of the file
            base_url: Public base URL the download link is built from

        Raises:
            InvalidMessage: If the file is empty or exceeds the size limit
        """
        size_bytes = len(content)
        if size_bytes == 0:
            raise InvalidMessage("Uploaded file is empty")
        if size_bytes > self._max_size_bytes:
            raise InvalidMessage(
                f"File size ({size_bytes} bytes) exceeds limit ({self._max_size_bytes} bytes)"
            )

        metadata = FileMetadata(
            uploader_id=uploader_id,
            original_filename=filename,
            stored_filename="",
            file_type=get_file_type(mime_type),
            mime_type=mime_type,
            size_bytes=size_bytes,
            file_url="",
        )
        metadata.stored_filename = f"{metadata.id}{Path(filename).suffix.lower()}"
        metadata.file_url = f"{base_url.rstrip('/')}/api/files/{metadata.id}"

        file_path = Path(self._upload_dir) / metadata.stored_filename
        file_path.write_bytes(content)
        logger.info(f"Saved file: {file_path} ({size_bytes} bytes)")

        self._get_connection().execute(
            f"INSERT INTO file_metadata ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            [
                metadata.id,
                metadata.uploader_id,
                metadata.original_filename,
                metadata.stored_filename,
                metadata.file_type.value,
                metadata.mime_type,
                metadata.size_bytes,
                metadata.file_url,
                datetime.fromtimestamp(metadata.uploaded_at),
            ]
        )
        return metadata

    def get_file(self, file_id: str) -> Optional[FileMetadata]:
        """Get file metadata by ID."""
        r = self._get_connection().execute(
            f"SELECT {_COLUMNS} FROM file_metadata WHERE id = ?", [file_id]
        ).fetchone()
        if not r:
            return None
        return FileMetadata(
            id=r[0],
            uploader_id=r[1],
            original_filename=r[2],
            stored_filename=r[3],
            file_type=FileType(r[4]),
            mime_type=r[5],
            size_bytes=r[6],
            file_url=r[7],
            uploaded_at=r[8].timestamp() if r[8] else 0,
        )

    def get_file_path(self, file_id: str) -> Optional[Path]:
        """Get the file path on disk for a file ID."""
        metadata = self.get_file(file_id)
        if not metadata:
            return None
        file_path = Path(self._upload_dir) / metadata.stored_filename
        return file_path if file_path.exists() else None

    def resolve_file_reference(self, upload_token: str) -> FileReference:
        """Turn an upload token into the reference stored in a message.

        Raises:
            NotFound: If no upload has this token.
        """
        metadata = self.get_file(upload_token)
        if metadata is None:
            raise NotFound(f"Unknown upload token: {upload_token}")
        return FileReference(
            fileName=metadata.original_filename,
            fileSize=metadata.size_bytes,
            fileUrl=metadata.file_url,
        )
