"""Shared test fixtures and configuration for backend tests."""
import pytest
from fastapi.testclient import TestClient

from duochat.accounts.service import AccountService
from duochat.config import reset_config
from duochat.files.service import FileStorageService
from duochat.main import app
from duochat.rooms.duckdb_store import DuckDBRoomStore
from duochat.rooms.store import InMemoryRoomStore


class FakeWebSocket:
    """Records frames sent by the hub instead of writing to a socket."""

    def __init__(self, fail: bool = False) -> None:
        self.sent = []
        self.fail = fail

    async def send_json(self, message: dict) -> None:
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(message)

    def of_type(self, frame_type: str) -> list:
        return [frame for frame in self.sent if frame["type"] == frame_type]


@pytest.fixture(autouse=True)
def isolated_services(tmp_path):
    """Use in-memory DuckDB services and a temp upload dir for each test.

    The app lifespan calls ``get_instance()`` and picks these up instead of
    opening the default database files.
    """
    reset_config()
    AccountService.reset_instance()
    FileStorageService.reset_instance()
    AccountService.get_instance(db_path=":memory:")
    FileStorageService.get_instance(
        upload_dir=str(tmp_path / "uploads"),
        db_path=":memory:",
    )
    yield
    AccountService.reset_instance()
    FileStorageService.reset_instance()
    reset_config()


@pytest.fixture
def api_client():
    """TestClient with the app lifespan running (gateway installed)."""
    with TestClient(app) as client:
        yield client


@pytest.fixture(params=["memory", "duckdb"])
def room_store(request):
    """Every RoomStore implementation, for contract tests."""
    if request.param == "memory":
        yield InMemoryRoomStore()
    else:
        store = DuckDBRoomStore(":memory:")
        yield store
        store._conn.close()


def register_approved(client: TestClient, account_id: str, name: str) -> dict:
    """Register an account and approve it (the first one is admin already)."""
    user = client.post("/api/register", json={"id": account_id, "name": name}).json()["user"]
    if user["status"] != "approved":
        client.post("/api/users/approve", json={"id": account_id})
    return user
