"""
Integration tests for the Bank Ledger API
Tests end-to-end workflows using FastAPI TestClient
"""

import pytest
from fastapi.testclient import TestClient
from unittest.mock import patch

from bank_ledger.api import create_app
from bank_ledger.config import LedgerConfig
from bank_ledger.storage import InMemoryStorage
from bank_ledger.system import BankingSystem


@pytest.fixture
def system():
    return BankingSystem(InMemoryStorage())


@pytest.fixture
def client(system):
    """Test client over an injected in-memory banking system"""
    app = create_app(system=system, config=LedgerConfig(database_url="memory://"))
    with TestClient(app) as client:
        yield client


def create_account(client, username="jperez", phone="600111222", opening_balance="1000.00", **extra):
    body = {
        "username": username,
        "password": "secret123",
        "first_name": "Juan",
        "last_name": "Perez",
        "age": 34,
        "phone": phone,
        "opening_balance": opening_balance,
    }
    body.update(extra)
    return client.post("/accounts", json=body)


@pytest.fixture
def funded(client):
    """Three accounts: 1000.00, 500.00 and 2000.00"""
    juan = create_account(client).json()["data"]
    maria = create_account(client, "mgarcia", "600333444", "500.00", first_name="Maria", last_name="Garcia").json()["data"]
    luis = create_account(client, "lmartin", "600555666", "2000.00", first_name="Luis", last_name="Martin").json()["data"]
    return juan, maria, luis


class TestHealthEndpoints:
    """Test basic health and root endpoints"""

    def test_health(self, client):
        r = client.get("/health")
        assert r.status_code == 200
        assert r.json()["status"] == "healthy"

    def test_root(self, client):
        r = client.get("/")
        assert r.status_code == 200
        data = r.json()
        assert data["name"] == "Bank Ledger API"
        assert data["endpoints"]["transfer"] == "/movements/transfer"

    def test_unknown_route(self, client):
        r = client.get("/nowhere")
        assert r.status_code == 404
        assert r.json() == {"success": False, "message": "Endpoint not found"}


class TestAccountFlow:
    """End-to-end account management"""

    def test_create_account(self, client):
        r = create_account(client)
        assert r.status_code == 201
        body = r.json()
        assert body["success"] is True
        assert body["message"] == "Account created successfully"
        assert body["data"]["balance"] == "1000.00"
        assert "password_hash" not in body["data"]

    def test_create_account_missing_field(self, client):
        r = create_account(client, first_name=None)
        assert r.status_code == 400
        body = r.json()
        assert body["success"] is False
        assert body["error_kind"] == "validation"
        assert "error" not in body

    def test_create_account_duplicate_phone(self, client):
        create_account(client)
        r = create_account(client, username="other")
        assert r.status_code == 409
        assert r.json()["error_kind"] == "duplicate_account"

    def test_get_list_update_delete(self, client, funded):
        juan, maria, _ = funded

        r = client.get(f"/accounts/{maria['id']}")
        assert r.status_code == 200
        assert r.json()["data"]["username"] == "mgarcia"

        r = client.get("/accounts")
        assert [a["id"] for a in r.json()["data"]] == [1, 2, 3]

        r = client.put(f"/accounts/{juan['id']}", json={"first_name": "Juana"})
        assert r.status_code == 200
        assert r.json()["data"]["first_name"] == "Juana"
        assert r.json()["data"]["balance"] == "1000.00"

        r = client.put(f"/accounts/{juan['id']}", json={"phone": maria["phone"]})
        assert r.status_code == 409

        r = client.delete(f"/accounts/{maria['id']}")
        assert r.status_code == 200
        assert client.get(f"/accounts/{maria['id']}").status_code == 404
        assert client.delete(f"/accounts/{maria['id']}").status_code == 404

    def test_get_missing_account(self, client):
        r = client.get("/accounts/42")
        assert r.status_code == 404
        assert r.json()["error_kind"] == "not_found"

    def test_non_numeric_account_id(self, client):
        r = client.get("/accounts/abc")
        assert r.status_code == 400


class TestLogin:

    def test_login_success(self, client, funded):
        r = client.post("/auth/login", json={"username": "jperez", "password": "secret123"})
        assert r.status_code == 200
        account = r.json()["data"]["account"]
        assert account["username"] == "jperez"
        assert "password_salt" not in account

    def test_login_wrong_password(self, client, funded):
        r = client.post("/auth/login", json={"username": "jperez", "password": "nope"})
        assert r.status_code == 401
        assert r.json()["message"] == "Invalid credentials"

    def test_login_missing_password(self, client):
        r = client.post("/auth/login", json={"username": "jperez"})
        assert r.status_code == 400


class TestMovementFlow:
    """Deposits, withdrawals and transfers over HTTP"""

    def test_deposit(self, client, funded):
        juan = funded[0]
        r = client.post("/movements/deposit", json={"account_id": juan["id"], "amount": "150.00"})
        assert r.status_code == 201
        data = r.json()["data"]
        assert data["previous_balance"] == "1000.00"
        assert data["new_balance"] == "1150.00"
        assert isinstance(data["movement_id"], int)

    def test_deposit_numeric_amount(self, client, funded):
        r = client.post("/movements/deposit", json={"account_id": funded[0]["id"], "amount": 25})
        assert r.status_code == 201
        assert r.json()["data"]["new_balance"] == "1025.00"

    def test_deposit_unknown_account(self, client):
        r = client.post("/movements/deposit", json={"account_id": 99, "amount": "10"})
        assert r.status_code == 404

    @pytest.mark.parametrize("body", [
        {"amount": "10"},
        {"account_id": 1},
        {"account_id": 1, "amount": "0"},
        {"account_id": 1, "amount": "-3"},
        {"account_id": 1, "amount": "1.234"},
        {"account_id": 1, "amount": "abc"},
    ])
    def test_deposit_invalid_body(self, client, funded, body):
        r = client.post("/movements/deposit", json=body)
        assert r.status_code == 400
        assert r.json()["success"] is False

    @pytest.mark.parametrize("amount", ["1e30", 1e30, "1000000000000.00"])
    def test_deposit_above_maximum_amount(self, client, funded, amount):
        juan = funded[0]
        r = client.post("/movements/deposit", json={"account_id": juan["id"], "amount": amount})
        assert r.status_code == 400
        assert r.json()["error_kind"] == "validation"
        assert client.get(f"/accounts/{juan['id']}").json()["data"]["balance"] == "1000.00"

    def test_deposit_over_maximum_balance(self, client, funded):
        juan = funded[0]
        r = client.post("/movements/deposit", json={"account_id": juan["id"], "amount": "999999999999.99"})
        assert r.status_code == 400
        assert r.json()["error_kind"] == "validation"
        assert client.get(f"/accounts/{juan['id']}").json()["data"]["balance"] == "1000.00"
        assert len(client.get("/movements").json()["data"]) == 3

    def test_withdrawal_and_insufficient_funds(self, client, funded):
        maria = funded[1]
        r = client.post("/movements/withdrawal", json={"account_id": maria["id"], "amount": "50.00"})
        assert r.status_code == 201
        assert r.json()["data"]["new_balance"] == "450.00"

        r = client.post("/movements/withdrawal", json={"account_id": maria["id"], "amount": "99999.00"})
        assert r.status_code == 400
        assert r.json()["error_kind"] == "insufficient_funds"
        assert client.get(f"/accounts/{maria['id']}").json()["data"]["balance"] == "450.00"

    def test_transfer(self, client, funded):
        juan, _, luis = funded
        r = client.post("/movements/transfer", json={
            "source_account_id": juan["id"],
            "destination_phone": luis["phone"],
            "amount": "30.00",
        })
        assert r.status_code == 201
        data = r.json()["data"]
        assert data["amount"] == "30.00"
        assert data["source"]["new_balance"] == "970.00"
        assert data["destination"]["name"] == "Luis Martin"
        assert data["destination"]["new_balance"] == "2030.00"

        movements = client.get(f"/accounts/{luis['id']}/movements").json()["data"]
        assert movements[0]["kind"] == "transfer"
        assert movements[0]["direction"] == "incoming"
        assert movements[0]["related_account_id"] == juan["id"]
        assert movements[0]["related_account_name"] == "Juan Perez"

    def test_transfer_errors(self, client, funded):
        juan = funded[0]

        r = client.post("/movements/transfer", json={
            "source_account_id": juan["id"], "destination_phone": juan["phone"], "amount": "1"})
        assert r.status_code == 400
        assert r.json()["error_kind"] == "self_transfer"

        r = client.post("/movements/transfer", json={
            "source_account_id": juan["id"], "destination_phone": "000", "amount": "1"})
        assert r.status_code == 404

        r = client.post("/movements/transfer", json={
            "source_account_id": 999, "destination_phone": "000", "amount": "1"})
        assert r.status_code == 404
        assert r.json()["message"] == "Source account not found"

    def test_list_movements(self, client, funded):
        r = client.get("/movements")
        assert r.status_code == 200
        data = r.json()["data"]
        assert len(data) == 3
        assert data[0]["account_name"] == "Luis Martin"
        assert data[0]["memo"] == "Opening balance"

    def test_store_failure_is_500_with_detail(self, client, funded, system):
        with patch.object(
            system.storage, "unit_of_work", side_effect=RuntimeError("database is locked")
        ):
            r = client.post("/movements/deposit", json={"account_id": 1, "amount": "1"})
        assert r.status_code == 500
        body = r.json()
        assert body["error_kind"] == "store_failure"
        assert body["error"] == "database is locked"


class TestLifespan:
    """Application-owned banking system"""

    def test_builds_and_seeds_from_config(self):
        config = LedgerConfig(database_url="memory://", seed_demo_data=True)
        app = create_app(config=config)

        with TestClient(app) as client:
            r = client.get("/accounts")
            assert r.status_code == 200
            assert len(r.json()["data"]) == 4

        assert app.state.banking_system is None

    def test_injected_system_left_open(self, system):
        app = create_app(system=system, config=LedgerConfig(database_url="memory://"))
        with TestClient(app):
            pass
        assert app.state.banking_system is system
