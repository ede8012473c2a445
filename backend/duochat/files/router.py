"""FastAPI router for file upload endpoints."""
import logging

from fastapi import APIRouter, File, Form, HTTPException, Request, UploadFile
from fastapi.responses import FileResponse

from duochat.config import get_config

from .schemas import FileUploadResponse
from .service import FileStorageService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["files"])


def _base_url(request: Request) -> str:
    configured = get_config().files.public_base_url
    return configured or str(request.base_url)


@router.post("/upload", response_model=FileUploadResponse)
async def upload_file(
    request: Request,
    file: UploadFile = File(...),
    userId: str = Form(...),
):
    """Upload a file and get an upload token for a chat message.

    The client then sends a ``message`` frame whose ``msg.uploadToken`` is
    the returned token; the server swaps it for ``{fileName, fileSize, fileUrl}``.

    Raises:
        InvalidMessage (422): If the file is empty or exceeds the size limit
    """
    content = await file.read()
    service = FileStorageService.get_instance()
    metadata = await service.save_file(
        uploader_id=userId,
        filename=file.filename or "unnamed",
        content=content,
        mime_type=file.content_type or "application/octet-stream",
        base_url=_base_url(request),
    )

    logger.info(
        f"File uploaded: {metadata.original_filename} "
        f"({metadata.size_bytes} bytes) by {userId}"
    )

    return FileUploadResponse(
        uploadToken=metadata.id,
        fileName=metadata.original_filename,
        fileSize=metadata.size_bytes,
        fileUrl=metadata.file_url,
        fileType=metadata.file_type,
    )


@router.get("/files/{file_id}")
async def download_file(file_id: str):
    """Download a file by ID.

    Raises:
        HTTPException 404: If file not found
    """
    service = FileStorageService.get_instance()

    metadata = service.get_file(file_id)
    if not metadata:
        raise HTTPException(status_code=404, detail="File not found")

    file_path = service.get_file_path(file_id)
    if not file_path:
        raise HTTPException(status_code=404, detail="File not found on disk")

    return FileResponse(
        path=file_path,
        filename=metadata.original_filename,
        media_type=metadata.mime_type,
    )
