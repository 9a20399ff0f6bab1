"""
Login endpoint
"""

from fastapi import APIRouter, Depends

from .dependencies import get_banking_system
from .responses import success_response
from .schemas import LoginRequest
from ..system import BankingSystem


router = APIRouter()


@router.post("/login")
def login(request: LoginRequest, system: BankingSystem = Depends(get_banking_system)):
    """Check username and password; returns the account without credentials"""
    account = system.account_manager.authenticate(request.username, request.password)
    return success_response({"account": account.to_dict()}, message="Login successful")
