"""
Tests for configuration, logging setup, seeding and the system container
"""

import json
import logging
from decimal import Decimal

from bank_ledger.config import LedgerConfig, get_config, reload_config
from bank_ledger.logging_config import JSONFormatter, log_action, setup_logging
from bank_ledger.seed import DEMO_ACCOUNTS, reset_and_seed
from bank_ledger.storage import InMemoryStorage, SQLiteStorage
from bank_ledger.system import BankingSystem


class TestLedgerConfig:

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("BANK_LEDGER_API_PORT", raising=False)
        config = LedgerConfig(_env_file=None)
        assert config.api_port == 3000
        assert config.database_url == "sqlite:///bank_ledger.db"
        assert config.seed_demo_data is False

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("BANK_LEDGER_DATABASE_URL", "memory://")
        monkeypatch.setenv("BANK_LEDGER_API_PORT", "8081")
        monkeypatch.setenv("BANK_LEDGER_SEED_DEMO_DATA", "true")

        config = reload_config()

        assert config is get_config()
        assert config.database_url == "memory://"
        assert config.api_port == 8081
        assert config.seed_demo_data is True

        monkeypatch.undo()
        reload_config()


class TestLogging:

    def setup_method(self):
        self.logger = setup_logging("INFO", "json", logger_name="bank_ledger.test")
        self.records = []
        handler = logging.Handler()
        handler.emit = self.records.append
        self.logger.addHandler(handler)

    def test_log_action_attaches_structured_fields(self):
        log_action(
            self.logger, "info", "Deposit completed",
            action="deposit", resource="account:1", extra={"amount": "150.00"}
        )

        record = self.records[0]
        assert record.action == "deposit"
        assert record.resource == "account:1"

        entry = json.loads(JSONFormatter().format(record))
        assert entry["message"] == "Deposit completed"
        assert entry["extra"] == {"amount": "150.00"}
        assert "correlation_id" not in entry

    def test_disabled_level_is_skipped(self):
        log_action(self.logger, "debug", "noise")
        assert self.records == []


class TestBankingSystem:

    def test_from_config_builds_storage(self, tmp_path):
        config = LedgerConfig(database_url=f"sqlite:///{tmp_path / 'system.db'}", _env_file=None)
        system = BankingSystem.from_config(config)
        try:
            assert isinstance(system.storage, SQLiteStorage)
            assert system.account_manager.list_accounts() == []
        finally:
            system.close()

    def test_reset_and_seed(self):
        system = BankingSystem(InMemoryStorage())
        system.account_manager.create_account("x", "pw", "X", "Y", 20, "1")

        accounts = reset_and_seed(system)

        assert len(accounts) == len(DEMO_ACCOUNTS)
        assert [a.username for a in system.account_manager.list_accounts()] == [
            row[0] for row in DEMO_ACCOUNTS
        ]
        assert accounts[3].balance == Decimal("750.50")
        assert len(system.movement_ledger.list_movements()) == len(DEMO_ACCOUNTS)
