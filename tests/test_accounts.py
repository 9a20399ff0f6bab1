"""
Test suite for account management

Covers provisioning, profile updates, deletion and login.
"""

import pytest
from decimal import Decimal

from bank_ledger.accounts import Account, AccountManager, OPENING_BALANCE_MEMO
from bank_ledger.errors import (
    AuthenticationError, DuplicateAccount, ErrorKind, NotFound, ValidationError
)
from bank_ledger.movements import Direction, MovementKind, MovementLedger
from bank_ledger.storage import InMemoryStorage, SQLiteStorage


def new_account(manager, username="jperez", phone="600111222", **overrides):
    fields = {
        "username": username,
        "password": "secret123",
        "first_name": "Juan",
        "last_name": "Perez",
        "age": 34,
        "phone": phone,
        "opening_balance": "1000.00",
    }
    fields.update(overrides)
    return manager.create_account(**fields)


class TestAccountManager:
    """Test account lifecycle"""

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.manager = AccountManager(self.storage)
        self.ledger = MovementLedger(self.storage)

    def test_create_account(self):
        account = new_account(self.manager)

        assert isinstance(account, Account)
        assert account.id == 1
        assert account.username == "jperez"
        assert account.display_name == "Juan Perez"
        assert account.balance == Decimal("1000.00")
        assert account.created_at is not None

    def test_password_is_hashed_and_salted(self):
        first = new_account(self.manager)
        second = new_account(self.manager, username="other", phone="600999999")

        assert first.password_hash != "secret123"
        assert first.password_salt != second.password_salt
        assert first.password_hash != second.password_hash

    def test_to_dict_hides_credentials(self):
        data = new_account(self.manager).to_dict()

        assert data["balance"] == "1000.00"
        assert "password_hash" not in data
        assert "password_salt" not in data
        assert "password" not in data

    def test_opening_balance_is_ledgered(self):
        account = new_account(self.manager, opening_balance="250.5")

        movements = self.ledger.list_account_movements(account.id)
        assert len(movements) == 1
        assert movements[0].kind == MovementKind.DEPOSIT
        assert movements[0].direction == Direction.INCOMING
        assert movements[0].amount == Decimal("250.50")
        assert movements[0].resulting_balance == Decimal("250.50")
        assert movements[0].memo == OPENING_BALANCE_MEMO

    def test_zero_opening_balance_writes_no_movement(self):
        account = new_account(self.manager, opening_balance=None)

        assert account.balance == Decimal("0.00")
        assert self.ledger.list_account_movements(account.id) == []

    @pytest.mark.parametrize("field", ["username", "password", "first_name", "last_name", "phone"])
    def test_required_text_fields(self, field):
        with pytest.raises(ValidationError) as exc_info:
            new_account(self.manager, **{field: "  "})
        assert exc_info.value.field == field

    @pytest.mark.parametrize("age", [None, 0, -3, "abc", 12.5, True])
    def test_invalid_age(self, age):
        with pytest.raises(ValidationError) as exc_info:
            new_account(self.manager, age=age)
        assert exc_info.value.field == "age"

    def test_negative_opening_balance(self):
        with pytest.raises(ValidationError):
            new_account(self.manager, opening_balance="-10")

    def test_duplicate_username(self):
        new_account(self.manager)
        with pytest.raises(DuplicateAccount) as exc_info:
            new_account(self.manager, phone="600000000")
        assert exc_info.value.kind == ErrorKind.DUPLICATE_ACCOUNT
        assert exc_info.value.field == "username"

    def test_duplicate_phone(self):
        new_account(self.manager)
        with pytest.raises(DuplicateAccount) as exc_info:
            new_account(self.manager, username="someone")
        assert exc_info.value.field == "phone"
        assert len(self.manager.list_accounts()) == 1

    def test_get_and_list_accounts(self):
        first = new_account(self.manager)
        second = new_account(self.manager, username="mgarcia", phone="600333444")

        assert self.manager.get_account(second.id).username == "mgarcia"
        assert [a.id for a in self.manager.list_accounts()] == [first.id, second.id]

    def test_get_missing_account(self):
        with pytest.raises(NotFound) as exc_info:
            self.manager.get_account(42)
        assert exc_info.value.key == 42

    def test_update_profile(self):
        account = new_account(self.manager)

        updated = self.manager.update_profile(account.id, first_name="Juana", age="35")

        assert updated.first_name == "Juana"
        assert updated.last_name == "Perez"
        assert updated.age == 35
        assert updated.balance == account.balance

    def test_update_profile_keeps_own_phone(self):
        account = new_account(self.manager)
        updated = self.manager.update_profile(account.id, phone="600111222")
        assert updated.phone == "600111222"

    def test_update_profile_phone_taken(self):
        new_account(self.manager)
        other = new_account(self.manager, username="mgarcia", phone="600333444")

        with pytest.raises(DuplicateAccount):
            self.manager.update_profile(other.id, phone="600111222")
        assert self.manager.get_account(other.id).phone == "600333444"

    def test_update_missing_account(self):
        with pytest.raises(NotFound):
            self.manager.update_profile(99, first_name="Ghost")

    def test_update_rejects_blank_name(self):
        account = new_account(self.manager)
        with pytest.raises(ValidationError):
            self.manager.update_profile(account.id, last_name="")

    def test_delete_account_keeps_its_movements(self):
        account = new_account(self.manager)

        self.manager.delete_account(account.id)

        with pytest.raises(NotFound):
            self.manager.get_account(account.id)
        assert len(self.ledger.list_account_movements(account.id)) == 1
        with pytest.raises(NotFound):
            self.manager.delete_account(account.id)


class TestAuthentication:
    """Login by username and password"""

    def setup_method(self):
        self.manager = AccountManager(InMemoryStorage())
        self.account = new_account(self.manager)

    def test_valid_credentials(self):
        account = self.manager.authenticate("jperez", "secret123")
        assert account.id == self.account.id

    def test_wrong_password(self):
        with pytest.raises(AuthenticationError) as exc_info:
            self.manager.authenticate("jperez", "wrong")
        assert exc_info.value.kind == ErrorKind.AUTHENTICATION

    def test_unknown_user_fails_the_same_way(self):
        with pytest.raises(AuthenticationError) as exc_info:
            self.manager.authenticate("nobody", "secret123")
        assert exc_info.value.message == "Invalid credentials"

    def test_missing_fields(self):
        with pytest.raises(ValidationError):
            self.manager.authenticate(None, "secret123")
        with pytest.raises(ValidationError):
            self.manager.authenticate("jperez", "")


class TestAccountsOnSQLite:
    """Same lifecycle on a SQLite file"""

    def setup_method(self):
        self.storage = None

    def teardown_method(self):
        if self.storage:
            self.storage.close()

    def test_create_update_login(self, tmp_path):
        self.storage = SQLiteStorage(tmp_path / "accounts.db")
        self.storage.initialize()
        manager = AccountManager(self.storage)

        account = new_account(manager)
        manager.update_profile(account.id, last_name="Perez Gil")

        loaded = manager.authenticate("jperez", "secret123")
        assert loaded.last_name == "Perez Gil"
        assert loaded.balance == Decimal("1000.00")
        assert loaded.created_at.tzinfo is not None

        with pytest.raises(DuplicateAccount):
            new_account(manager, username="other")
