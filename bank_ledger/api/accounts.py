"""
Account management endpoints
"""

from fastapi import APIRouter, Depends, status

from .dependencies import get_banking_system
from .responses import success_response
from .schemas import CreateAccountRequest, UpdateAccountRequest
from ..system import BankingSystem


router = APIRouter()


@router.get("")
def list_accounts(system: BankingSystem = Depends(get_banking_system)):
    """List all accounts"""
    accounts = system.account_manager.list_accounts()
    return success_response([account.to_dict() for account in accounts])


@router.post("")
def create_account(
    request: CreateAccountRequest,
    system: BankingSystem = Depends(get_banking_system)
):
    """Provision a new account"""
    account = system.account_manager.create_account(
        username=request.username,
        password=request.password,
        first_name=request.first_name,
        last_name=request.last_name,
        age=request.age,
        phone=request.phone,
        opening_balance=request.opening_balance
    )
    return success_response(
        account.to_dict(),
        message="Account created successfully",
        status_code=status.HTTP_201_CREATED
    )


@router.get("/{account_id}")
def get_account(account_id: int, system: BankingSystem = Depends(get_banking_system)):
    """Get account details"""
    account = system.account_manager.get_account(account_id)
    return success_response(account.to_dict())


@router.put("/{account_id}")
def update_account(
    account_id: int,
    request: UpdateAccountRequest,
    system: BankingSystem = Depends(get_banking_system)
):
    """Update name, age or phone; balances cannot be edited here"""
    account = system.account_manager.update_profile(
        account_id,
        first_name=request.first_name,
        last_name=request.last_name,
        age=request.age,
        phone=request.phone
    )
    return success_response(account.to_dict(), message="Account updated successfully")


@router.delete("/{account_id}")
def delete_account(account_id: int, system: BankingSystem = Depends(get_banking_system)):
    """Delete an account"""
    system.account_manager.delete_account(account_id)
    return success_response({"id": account_id}, message="Account deleted successfully")


@router.get("/{account_id}/movements")
def get_account_movements(account_id: int, system: BankingSystem = Depends(get_banking_system)):
    """Movement history of one account, most recent first"""
    movements = system.movement_ledger.list_account_movements(account_id)
    return success_response([movement.to_dict() for movement in movements])
