"""Demo data for the bank ledger

Resets the configured store and provisions a handful of accounts so the API
can be exercised by hand.

Run with: python -m bank_ledger.seed
"""

import sys
from typing import List

from .accounts import Account, AccountManager
from .config import get_config
from .logging_config import setup_logging
from .system import BankingSystem

# username, password, first name, last name, age, phone, opening balance
DEMO_ACCOUNTS = [
    ("jperez", "demo1234", "Juan", "Perez", 34, "600111222", "1000.00"),
    ("mgarcia", "demo1234", "Maria", "Garcia", 28, "600333444", "500.00"),
    ("lmartin", "demo1234", "Luis", "Martin", 45, "600555666", "2000.00"),
    ("asanchez", "demo1234", "Ana", "Sanchez", 39, "600777888", "750.50"),
]


def seed_accounts(account_manager: AccountManager) -> List[Account]:
    """Provision the demo accounts; opening balances are ledgered as deposits"""
    return [
        account_manager.create_account(
            username=username,
            password=password,
            first_name=first_name,
            last_name=last_name,
            age=age,
            phone=phone,
            opening_balance=balance,
        )
        for username, password, first_name, last_name, age, phone, balance in DEMO_ACCOUNTS
    ]


def reset_and_seed(system: BankingSystem) -> List[Account]:
    """Drop every account and movement, then load the demo accounts"""
    system.storage.reset()
    return seed_accounts(system.account_manager)


def main() -> int:
    config = get_config()
    setup_logging(config.log_level, "text", config.log_file)

    system = BankingSystem.from_config(config)
    try:
        accounts = reset_and_seed(system)
    finally:
        system.close()

    print(f"Database reset: {config.database_url}")
    for account in accounts:
        print(f"  #{account.id} {account.display_name:<16} {account.phone}  {account.balance}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
