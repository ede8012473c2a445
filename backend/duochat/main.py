"""duochat backend application.

This is the main entry point for the duochat service: 1:1 real-time
messaging between an admin account and approved user accounts.

Modules:
    - rooms: room identity, persistence, live sessions and the WebSocket protocol
    - accounts: registration and the admin approval workflow
    - files: file uploads referenced from chat messages
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from duochat.accounts.router import router as accounts_router
from duochat.accounts.service import AccountService
from duochat.config import AppSettings, get_config
from duochat.errors import ChatError
from duochat.files.router import router as files_router
from duochat.files.service import FileStorageService
from duochat.rooms.duckdb_store import DuckDBRoomStore
from duochat.rooms.gateway import SessionGateway
from duochat.rooms.hub import ConnectionHub
from duochat.rooms.protocol import DeliveryProtocol
from duochat.rooms.router import router as rooms_router, set_gateway
from duochat.rooms.store import InMemoryRoomStore, RoomStore

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

# Silence verbose third-party loggers.
for _noisy in (
    "uvicorn.access",
    "multipart",
    "python_multipart",
):
    logging.getLogger(_noisy).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


def build_room_store(config: AppSettings) -> RoomStore:
    """Create the room store selected by ``storage.backend``."""
    if config.storage.backend == "duckdb":
        return DuckDBRoomStore(config.storage.db_path)
    return InMemoryRoomStore()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown events."""
    # Startup
    config = get_config()

    configured_level = getattr(logging, config.logging.level.upper(), None)
    if configured_level is not None:
        logging.getLogger().setLevel(configured_level)
        logger.info("Root logger level set to %s", config.logging.level.upper())

    accounts = AccountService.get_instance(db_path=config.storage.accounts_db_path)
    files = FileStorageService.get_instance(
        upload_dir=config.files.upload_dir,
        db_path=config.files.db_path,
        max_size_bytes=config.files.max_size_bytes,
    )

    store = build_room_store(config)
    gateway = SessionGateway(
        store,
        ConnectionHub(send_timeout=config.delivery.send_timeout_seconds),
        authorizer=accounts.is_participant_authorized,
        file_resolver=files.resolve_file_reference,
        storage_timeout=config.storage.timeout_seconds,
    )
    set_gateway(gateway, DeliveryProtocol(gateway, max_text_length=config.delivery.max_text_length))
    logger.info(
        "Session gateway ready (store=%s, storage timeout=%ss)",
        type(store).__name__,
        config.storage.timeout_seconds,
    )

    yield  # Application runs here

    # Shutdown
    await store.close()
    logger.info("Application shutdown complete")


app = FastAPI(
    title="duochat API",
    description="1:1 real-time messaging between an admin and approved users",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_config().server.allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)

app.include_router(rooms_router)
app.include_router(accounts_router)
app.include_router(files_router)


@app.exception_handler(ChatError)
async def chat_error_handler(request: Request, exc: ChatError) -> JSONResponse:
    """Map messaging errors to ``{ok: false, error, detail}`` responses."""
    logger.info("%s %s failed: %s: %s", request.method, request.url.path, exc.code, exc.message)
    return JSONResponse(
        {"ok": False, "error": exc.code, "detail": exc.message},
        status_code=exc.status_code,
    )


@app.get("/health")
async def health() -> dict:
    """Health check endpoint.

    Returns:
        dict: Status object indicating the server is running.
    """
    return {"status": "ok"}
