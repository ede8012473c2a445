"""Tests for registration, approval and admin transfer."""
from datetime import datetime, timezone

import pytest

from duochat.accounts.schemas import Account, AccountRole, AccountStatus
from duochat.accounts.service import AccountService
from duochat.errors import NotAuthorized, NotFound


@pytest.fixture
def service():
    return AccountService.get_instance()


class TestAccountService:
    def test_first_account_is_approved_admin(self, service):
        first = service.register("a1", "Alice")
        second = service.register("b1", "Bob")
        assert (first.role, first.status) == (AccountRole.ADMIN, AccountStatus.APPROVED)
        assert (second.role, second.status) == (AccountRole.USER, AccountStatus.PENDING)

    def test_register_returns_existing_account_by_name(self, service):
        service.register("a1", "Alice")
        again = service.register("other-id", "  alice ")
        assert again.id == "a1"
        assert len(service.list_accounts()) == 1

    def test_only_approved_accounts_may_chat(self, service):
        service.register("a1", "Alice")
        service.register("b1", "Bob")
        assert service.is_participant_authorized("a1")
        assert not service.is_participant_authorized("b1")
        assert not service.is_participant_authorized("ghost")
        service.approve("b1")
        assert service.is_participant_authorized("b1")

    def test_created_at_is_current_utc(self, service):
        before = datetime.now(timezone.utc).replace(tzinfo=None)
        account = service.register("a1", "Alice")
        after = datetime.now(timezone.utc).replace(tzinfo=None)
        assert before <= account.createdAt.replace(tzinfo=None) <= after
        assert Account(id="b1", name="Bob").createdAt.tzinfo is timezone.utc

    def test_approve_unknown_account(self, service):
        with pytest.raises(NotFound):
            service.approve("ghost")

    def test_list_keeps_registration_order(self, service):
        for account_id, name in [("z", "Zed"), ("a", "Amy"), ("m", "Max")]:
            service.register(account_id, name)
        assert [a.id for a in service.list_accounts()] == ["z", "a", "m"]

    def test_transfer_admin(self, service):
        service.register("a1", "Alice")
        service.register("b1", "Bob")
        service.transfer_admin("a1", "b1")
        assert service.get_admin().id == "b1"
        assert service.get("b1").status == AccountStatus.APPROVED
        assert service.get("a1").role == AccountRole.USER

    def test_transfer_admin_requires_admin(self, service):
        service.register("a1", "Alice")
        service.register("b1", "Bob")
        with pytest.raises(NotAuthorized):
            service.transfer_admin("b1", "a1")
        with pytest.raises(NotFound):
            service.transfer_admin("a1", "ghost")

    def test_partner_pairs_admin_with_first_approved_user(self, service):
        service.register("admin", "Admin")
        assert service.partner("admin") == (None, None)
        service.register("u1", "One")
        service.register("u2", "Two")
        service.approve("u2")
        service.approve("u1")

        partner, room_id = service.partner("admin")
        assert partner.id == "u1"
        assert room_id == "admin--u1"

        partner, room_id = service.partner("u2")
        assert partner.id == "admin"
        assert room_id == "admin--u2"

    def test_reject(self, service):
        service.register("a1", "Alice")
        service.register("b1", "Bob")
        assert service.reject("b1") is True
        assert service.reject("b1") is False
        assert service.get("b1") is None


class TestAccountRoutes:
    def test_register_and_approve_flow(self, api_client):
        admin = api_client.post("/api/register", json={"id": "a1", "name": "Alice"}).json()
        assert admin["ok"] is True
        assert admin["user"]["role"] == "admin"

        user = api_client.post("/api/register", json={"id": "b1", "name": "Bob"}).json()["user"]
        assert user["status"] == "pending"

        assert api_client.post("/api/users/approve", json={"id": "b1"}).json() == {"ok": True}
        users = api_client.get("/api/users").json()["users"]
        assert [(u["id"], u["status"]) for u in users] == [("a1", "approved"), ("b1", "approved")]

        partner = api_client.get("/api/partner", params={"userId": "b1"}).json()
        assert partner["partner"]["id"] == "a1"
        assert partner["roomId"] == "a1--b1"

    def test_approve_unknown_is_404(self, api_client):
        response = api_client.post("/api/users/approve", json={"id": "ghost"})
        assert response.status_code == 404
        assert response.json()["error"] == "NotFound"

    def test_register_validation(self, api_client):
        response = api_client.post("/api/register", json={"id": "a1", "name": ""})
        assert response.status_code == 422

    def test_transfer_admin_by_non_admin_is_403(self, api_client):
        api_client.post("/api/register", json={"id": "a1", "name": "Alice"})
        api_client.post("/api/register", json={"id": "b1", "name": "Bob"})
        response = api_client.post(
            "/api/transfer-admin", json={"currentAdminId": "b1", "newAdminId": "b1"}
        )
        assert response.status_code == 403

    def test_reject_purges_rooms(self, api_client):
        api_client.post("/api/register", json={"id": "a1", "name": "Alice"})
        api_client.post("/api/register", json={"id": "b1", "name": "Bob"})
        api_client.post("/api/users/approve", json={"id": "b1"})

        with api_client.websocket_connect("/ws") as alice, api_client.websocket_connect("/ws") as bob:
            for ws, account in ((alice, {"id": "a1", "name": "Alice"}), (bob, {"id": "b1", "name": "Bob"})):
                ws.send_json({"type": "join", "roomId": "a1--b1", "account": account})
                ws.receive_json()
            alice.send_json({
                "type": "message", "roomId": "a1--b1",
                "msg": {"id": "m1", "from": "a1", "name": "Alice", "text": "hi"},
            })
            alice.receive_json()
            bob.receive_json()

            response = api_client.post("/api/users/reject", json={"id": "b1"}).json()
            assert response == {"ok": True, "purgedRooms": ["a1--b1"]}
            assert alice.receive_json() == {"type": "room:cleared", "roomId": "a1--b1"}

        users = api_client.get("/api/users").json()["users"]
        assert [u["id"] for u in users] == ["a1"]
