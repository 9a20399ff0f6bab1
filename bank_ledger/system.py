"""
Banking system container

Owns the storage client and the services built on it. Constructed once at
process start and closed at process stop; the HTTP layer receives it by
injection instead of importing a global.
"""

from typing import Optional

from .accounts import AccountManager
from .config import LedgerConfig, get_config
from .movements import MovementLedger
from .storage import StorageInterface, create_storage
from .transactions import TransactionProcessor
from .logging_config import get_logger


logger = get_logger("bank_ledger.system")


class BankingSystem:
    """Ledger services sharing one storage backend"""

    def __init__(self, storage: StorageInterface):
        self.storage = storage
        self.account_manager = AccountManager(storage)
        self.movement_ledger = MovementLedger(storage)
        self.transaction_processor = TransactionProcessor(storage)

    @classmethod
    def from_config(cls, config: Optional[LedgerConfig] = None) -> 'BankingSystem':
        """Build the storage backend named by the configuration and create its schema"""
        config = config or get_config()
        storage = create_storage(
            config.database_url,
            pool_size=config.database_pool_size,
            pool_timeout=config.database_pool_timeout,
        )
        storage.initialize()
        logger.info("Storage initialized (%s)", type(storage).__name__)
        return cls(storage)

    def close(self) -> None:
        self.storage.close()
        logger.info("Storage closed")
