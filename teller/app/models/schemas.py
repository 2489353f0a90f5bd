from __future__ import annotations

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from .enums import AccountStatusCode, AccountTypeCode, Role


class Principal(BaseModel):
    """The authenticated identity attached to a request."""

    model_config = ConfigDict(frozen=True)

    user_id: int
    role: Role


class AccountStatusResponse(BaseModel):
    id: int
    status: str


class AccountTypeResponse(BaseModel):
    id: int
    type: str


class AccountResponse(BaseModel):
    account_id: int
    balance: Decimal = Field(..., ge=0)
    status: AccountStatusResponse
    type: AccountTypeResponse


class AccountCreate(BaseModel):
    user_id: int = Field(..., description="User that will own the new account")
    balance: Decimal = Decimal("0")
    status_id: int = AccountStatusCode.PENDING
    type_id: int = AccountTypeCode.CHECKING


class AccountUpdate(BaseModel):
    account_id: int
    balance: Optional[Decimal] = None
    status_id: Optional[int] = None
    type_id: Optional[int] = None


class AmountRequest(BaseModel):
    # Sign and size are validated by the engine so that failures are classified.
    amount: Decimal


class TransferRequest(BaseModel):
    source_account_id: int
    target_account_id: int
    amount: Decimal


class TransferResponse(BaseModel):
    source: AccountResponse
    target: AccountResponse


MAX_ACCRUAL_MONTHS = 1200


class PassTimeRequest(BaseModel):
    num_of_months: int = Field(..., ge=0, le=MAX_ACCRUAL_MONTHS)
    rate: Optional[Decimal] = Field(
        default=None, description="Per-period rate; the configured default when omitted"
    )


class AccrualReport(BaseModel):
    months: int
    rate: Decimal
    succeeded: int = 0
    failed: list[int] = Field(default_factory=list)


class UserCreate(BaseModel):
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    role: Role = Role.CUSTOMER


class UserUpdate(BaseModel):
    user_id: int
    password: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    role: Optional[Role] = None


class UserResponse(BaseModel):
    user_id: int
    username: str
    first_name: str
    last_name: str
    email: str
    role: Role


class LoginRequest(BaseModel):
    username: str
    password: str


class LoginResponse(BaseModel):
    token: str
    user: UserResponse


class MessageResponse(BaseModel):
    message: str
