from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal
from typing import Optional

from sqlmodel import Field, SQLModel

from .enums import AccountStatusCode, AccountTypeCode, Role

BALANCE_DIGITS = 18
BALANCE_PLACES = 4


class AccountStatus(SQLModel, table=True):
    __tablename__ = "account_status"

    id: int = Field(primary_key=True)
    status: str


class AccountType(SQLModel, table=True):
    __tablename__ = "account_type"

    id: int = Field(primary_key=True)
    type: str


class Account(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    balance: Decimal = Field(
        default=Decimal("0"),
        max_digits=BALANCE_DIGITS,
        decimal_places=BALANCE_PLACES,
    )
    status_id: int = Field(
        default=AccountStatusCode.PENDING, foreign_key="account_status.id", index=True
    )
    type_id: int = Field(
        default=AccountTypeCode.CHECKING, foreign_key="account_type.id", index=True
    )


class User(SQLModel, table=True):
    __tablename__ = "users"

    id: Optional[int] = Field(default=None, primary_key=True)
    username: str = Field(index=True, unique=True)
    password: str
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    role: Role = Field(default=Role.CUSTOMER)


class UserAccount(SQLModel, table=True):
    __tablename__ = "user_account"

    user_id: int = Field(foreign_key="users.id", primary_key=True)
    account_id: int = Field(foreign_key="account.id", primary_key=True, index=True)


class UserSession(SQLModel, table=True):
    __tablename__ = "user_session"

    token: str = Field(primary_key=True)
    user_id: int = Field(foreign_key="users.id", index=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
