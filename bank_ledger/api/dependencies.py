"""
Request dependencies
"""

from fastapi import Request

from ..errors import StoreFailure
from ..system import BankingSystem


def get_banking_system(request: Request) -> BankingSystem:
    """The BankingSystem attached to the application at startup"""
    system = getattr(request.app.state, "banking_system", None)
    if system is None:
        raise StoreFailure("Banking system is not initialized")
    return system
