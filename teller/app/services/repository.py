from __future__ import annotations

import secrets
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from decimal import Decimal
from typing import Optional, TypeVar

from sqlalchemy import exc as sa_exc
from sqlmodel import Session, select

from ..core.errors import TransientStoreError
from ..models import (
    AccountModel,
    AccountResponse,
    AccountStatusModel,
    AccountStatusResponse,
    AccountTypeModel,
    AccountTypeResponse,
    Principal,
    UserAccountModel,
    UserModel,
    UserSessionModel,
)

SessionFactory = Callable[[], Session]
RepositoryT = TypeVar("RepositoryT")

TRANSIENT_STORE_ERRORS = (
    sa_exc.OperationalError,
    sa_exc.InterfaceError,
    sa_exc.TimeoutError,
)

AccountRow = tuple[AccountModel, AccountStatusModel, AccountTypeModel]


@contextmanager
def translate_store_errors() -> Iterator[None]:
    """Re-raise connectivity, lock and timeout failures as ``TransientStoreError``."""
    try:
        yield
    except TRANSIENT_STORE_ERRORS as exc:
        raise TransientStoreError(f"Store operation failed: {exc.__class__.__name__}") from exc


@contextmanager
def transaction(
    session_factory: SessionFactory,
    repository_cls: Callable[[Session], RepositoryT],
) -> Iterator[RepositoryT]:
    """Run the block as one store transaction; commit only if it completes."""
    with translate_store_errors():
        with session_factory() as session:
            yield repository_cls(session)
            session.commit()


def account_to_response(row: AccountRow) -> AccountResponse:
    account, status, account_type = row
    return AccountResponse(
        account_id=account.id,
        balance=account.balance,
        status=AccountStatusResponse(id=status.id, status=status.status),
        type=AccountTypeResponse(id=account_type.id, type=account_type.type),
    )


class AccountRepository:
    """Thin data access layer for accounts and ownership links."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def _joined(self):
        return (
            select(AccountModel, AccountStatusModel, AccountTypeModel)
            .join(AccountStatusModel, AccountModel.status_id == AccountStatusModel.id)
            .join(AccountTypeModel, AccountModel.type_id == AccountTypeModel.id)
        )

    # Accounts -----------------------------------------------------------
    def add_account(self, balance: Decimal, status_id: int, type_id: int) -> AccountModel:
        account = AccountModel(balance=balance, status_id=status_id, type_id=type_id)
        self.session.add(account)
        self.session.flush()
        self.session.refresh(account)
        return account

    def get_account(self, account_id: int, *, for_update: bool = False) -> Optional[AccountModel]:
        stmt = select(AccountModel).where(AccountModel.id == account_id)
        if for_update:
            stmt = stmt.with_for_update()
        return self.session.exec(stmt).first()

    def find_account(self, account_id: int) -> Optional[AccountRow]:
        stmt = self._joined().where(AccountModel.id == account_id)
        return self.session.exec(stmt).first()

    def set_balance(self, account: AccountModel, balance: Decimal) -> AccountModel:
        account.balance = balance
        self.session.add(account)
        self.session.flush()
        return account

    def save_account(self, account: AccountModel) -> AccountModel:
        self.session.add(account)
        self.session.flush()
        return account

    def delete_account(self, account: AccountModel) -> None:
        links = select(UserAccountModel).where(UserAccountModel.account_id == account.id)
        for link in list(self.session.exec(links)):
            self.session.delete(link)
        self.session.delete(account)
        self.session.flush()

    def list_accounts(self) -> list[AccountRow]:
        return list(self.session.exec(self._joined().order_by(AccountModel.id)))

    def list_accounts_by_status(self, status_id: int) -> list[AccountRow]:
        stmt = self._joined().where(AccountModel.status_id == status_id).order_by(AccountModel.id)
        return list(self.session.exec(stmt))

    def list_accounts_by_type(self, type_id: int) -> list[AccountRow]:
        stmt = self._joined().where(AccountModel.type_id == type_id).order_by(AccountModel.id)
        return list(self.session.exec(stmt))

    def list_accounts_by_owner(self, user_id: int) -> list[AccountRow]:
        stmt = (
            self._joined()
            .join(UserAccountModel, UserAccountModel.account_id == AccountModel.id)
            .where(UserAccountModel.user_id == user_id)
            .order_by(AccountModel.id)
        )
        return list(self.session.exec(stmt))

    # Reference data -----------------------------------------------------
    def get_status(self, status_id: int) -> Optional[AccountStatusModel]:
        return self.session.get(AccountStatusModel, status_id)

    def get_type(self, type_id: int) -> Optional[AccountTypeModel]:
        return self.session.get(AccountTypeModel, type_id)

    # Ownership links ----------------------------------------------------
    def add_owner(self, user_id: int, account_id: int) -> None:
        self.session.add(UserAccountModel(user_id=user_id, account_id=account_id))
        self.session.flush()

    def list_owners(self, account_id: int) -> set[int]:
        stmt = select(UserAccountModel.user_id).where(UserAccountModel.account_id == account_id)
        return set(self.session.exec(stmt))


class UserRepository:
    """Data access for users and their login sessions."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def add_user(self, user: UserModel) -> UserModel:
        self.session.add(user)
        self.session.flush()
        self.session.refresh(user)
        return user

    def get_user(self, user_id: int) -> Optional[UserModel]:
        return self.session.get(UserModel, user_id)

    def find_by_username(self, username: str) -> Optional[UserModel]:
        stmt = select(UserModel).where(UserModel.username == username)
        return self.session.exec(stmt).first()

    def list_users(self) -> list[UserModel]:
        return list(self.session.exec(select(UserModel).order_by(UserModel.id)))

    def save_user(self, user: UserModel) -> UserModel:
        self.session.add(user)
        self.session.flush()
        return user

    # Sessions -----------------------------------------------------------
    def open_session(self, user_id: int) -> str:
        token = secrets.token_urlsafe(32)
        self.session.add(UserSessionModel(token=token, user_id=user_id))
        self.session.flush()
        return token

    def close_session(self, token: str) -> None:
        user_session = self.session.get(UserSessionModel, token)
        if user_session is not None:
            self.session.delete(user_session)
            self.session.flush()

    def find_principal(self, token: str) -> Optional[Principal]:
        stmt = (
            select(UserModel.id, UserModel.role)
            .join(UserSessionModel, UserSessionModel.user_id == UserModel.id)
            .where(UserSessionModel.token == token)
        )
        row = self.session.exec(stmt).first()
        if row is None:
            return None
        user_id, role = row
        return Principal(user_id=user_id, role=role)


class AccountStore:
    """The account collaborator the engine and the policy are built on.

    Every call opens its own short-lived session from ``session_factory``;
    ``transaction`` hands out a repository for multi-statement units that
    must commit or roll back as a whole.
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        repository_cls: Callable[[Session], AccountRepository] = AccountRepository,
    ) -> None:
        self._session_factory = session_factory
        self._repository_cls = repository_cls

    def transaction(self):
        return transaction(self._session_factory, self._repository_cls)

    def get_account(self, account_id: int) -> Optional[AccountResponse]:
        with self.transaction() as repo:
            row = repo.find_account(account_id)
            return account_to_response(row) if row is not None else None

    def list_owners(self, account_id: int) -> set[int]:
        with self.transaction() as repo:
            return repo.list_owners(account_id)

    def list_accounts_by_type(self, type_id: int) -> list[AccountResponse]:
        with self.transaction() as repo:
            return [account_to_response(row) for row in repo.list_accounts_by_type(type_id)]
