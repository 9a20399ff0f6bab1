"""
Movement endpoints: ledger queries and money movements
"""

from fastapi import APIRouter, Depends, status

from .dependencies import get_banking_system
from .responses import error_response, success_response
from .schemas import DepositRequest, WithdrawalRequest, TransferRequest
from ..system import BankingSystem


router = APIRouter()


@router.get("")
def list_movements(system: BankingSystem = Depends(get_banking_system)):
    """All movements with owner and counterparty names, most recent first"""
    movements = system.movement_ledger.list_movements()
    return success_response([movement.to_dict() for movement in movements])


@router.post("/deposit")
def deposit(
    request: DepositRequest,
    system: BankingSystem = Depends(get_banking_system)
):
    """Credit an account"""
    result = system.transaction_processor.deposit(
        account_id=request.account_id,
        amount=request.amount,
        memo=request.memo
    )
    if not result.ok:
        return error_response(result.error)

    return success_response(
        result.value.to_dict(),
        message="Deposit completed successfully",
        status_code=status.HTTP_201_CREATED
    )


@router.post("/withdrawal")
def withdrawal(
    request: WithdrawalRequest,
    system: BankingSystem = Depends(get_banking_system)
):
    """Debit an account"""
    result = system.transaction_processor.withdraw(
        account_id=request.account_id,
        amount=request.amount,
        memo=request.memo
    )
    if not result.ok:
        return error_response(result.error)

    return success_response(
        result.value.to_dict(),
        message="Withdrawal completed successfully",
        status_code=status.HTTP_201_CREATED
    )


@router.post("/transfer")
def transfer(
    request: TransferRequest,
    system: BankingSystem = Depends(get_banking_system)
):
    """Send funds to the account registered with a phone number"""
    result = system.transaction_processor.transfer(
        source_account_id=request.source_account_id,
        destination_phone=request.destination_phone,
        amount=request.amount,
        memo=request.memo
    )
    if not result.ok:
        return error_response(result.error)

    return success_response(
        result.value.to_dict(),
        message="Transfer completed successfully",
        status_code=status.HTTP_201_CREATED
    )
