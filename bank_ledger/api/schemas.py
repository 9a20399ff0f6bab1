"""
Pydantic schemas for API requests

Fields are optional at this layer so that missing values reach the ledger
services, which report them with their own validation messages.
"""

from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, Field


# Auth schemas
class LoginRequest(BaseModel):
    username: Optional[str] = None
    password: Optional[str] = None


# Account schemas
class CreateAccountRequest(BaseModel):
    username: Optional[str] = None
    password: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    age: Optional[int] = None
    phone: Optional[str] = Field(None, description="Unique phone number, used as transfer destination")
    opening_balance: Optional[Decimal] = Field(None, description="Initial funds, recorded as a deposit")


class UpdateAccountRequest(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    age: Optional[int] = None
    phone: Optional[str] = None


# Movement schemas
class DepositRequest(BaseModel):
    account_id: Optional[int] = None
    amount: Optional[Decimal] = Field(None, description="Positive amount, at most two decimals")
    memo: Optional[str] = None


class WithdrawalRequest(BaseModel):
    account_id: Optional[int] = None
    amount: Optional[Decimal] = Field(None, description="Positive amount, at most two decimals")
    memo: Optional[str] = None


class TransferRequest(BaseModel):
    source_account_id: Optional[int] = None
    destination_phone: Optional[str] = Field(None, description="Phone registered to the receiving account")
    amount: Optional[Decimal] = Field(None, description="Positive amount, at most two decimals")
    memo: Optional[str] = None
