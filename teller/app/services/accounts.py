from __future__ import annotations

import logging
from decimal import Decimal
from typing import Optional

from ..core.errors import AccountNotFoundError, IllegalAmountError, UserNotFoundError
from ..models import AccountCreate, AccountResponse, AccountUpdate, Principal
from .engine import actor_id, quantize_balance
from .locks import AccountLocks
from .repository import (
    AccountRepository,
    AccountStore,
    UserRepository,
    account_to_response,
)

logger = logging.getLogger(__name__)


class AccountService:
    """Administrative reads and writes on accounts.

    Writes that touch a balance take the same per-account lock as the
    transaction engine.
    """

    def __init__(self, store: AccountStore, locks: AccountLocks) -> None:
        self._store = store
        self._locks = locks

    def _check_balance(self, balance: Decimal) -> Decimal:
        if not balance.is_finite() or balance < 0:
            raise IllegalAmountError("An account balance cannot be negative")
        return quantize_balance(balance)

    def _check_reference(self, repo: AccountRepository, status_id: int, type_id: int) -> None:
        if repo.get_status(status_id) is None:
            raise ValueError(f"Unknown account status {status_id}")
        if repo.get_type(type_id) is None:
            raise ValueError(f"Unknown account type {type_id}")

    def list_accounts(self) -> list[AccountResponse]:
        with self._store.transaction() as repo:
            return [account_to_response(row) for row in repo.list_accounts()]

    def list_by_status(self, status_id: int) -> list[AccountResponse]:
        with self._store.transaction() as repo:
            return [account_to_response(row) for row in repo.list_accounts_by_status(status_id)]

    def list_by_owner(self, user_id: int) -> list[AccountResponse]:
        with self._store.transaction() as repo:
            return [account_to_response(row) for row in repo.list_accounts_by_owner(user_id)]

    def get_account(self, account_id: int) -> AccountResponse:
        account = self._store.get_account(account_id)
        if account is None:
            raise AccountNotFoundError(f"Account {account_id} not found")
        return account

    def open_account(
        self, payload: AccountCreate, *, principal: Optional[Principal] = None
    ) -> AccountResponse:
        balance = self._check_balance(payload.balance)
        with self._store.transaction() as repo:
            if UserRepository(repo.session).get_user(payload.user_id) is None:
                raise UserNotFoundError(f"User {payload.user_id} not found")
            self._check_reference(repo, payload.status_id, payload.type_id)
            account = repo.add_account(balance, payload.status_id, payload.type_id)
            repo.add_owner(payload.user_id, account.id)
            response = account_to_response(repo.find_account(account.id))
        logger.info(
            "account.created",
            extra={
                "account_id": response.account_id,
                "user_id": payload.user_id,
                "actor_id": actor_id(principal),
            },
        )
        return response

    def update_account(
        self, payload: AccountUpdate, *, principal: Optional[Principal] = None
    ) -> AccountResponse:
        with self._locks.hold(payload.account_id):
            with self._store.transaction() as repo:
                account = repo.get_account(payload.account_id, for_update=True)
                if account is None:
                    raise AccountNotFoundError(f"Account {payload.account_id} not found")
                if payload.balance is not None:
                    account.balance = self._check_balance(payload.balance)
                status_id = payload.status_id if payload.status_id is not None else account.status_id
                type_id = payload.type_id if payload.type_id is not None else account.type_id
                self._check_reference(repo, status_id, type_id)
                account.status_id = status_id
                account.type_id = type_id
                repo.save_account(account)
                response = account_to_response(repo.find_account(account.id))
        logger.info(
            "account.updated",
            extra={"account_id": payload.account_id, "actor_id": actor_id(principal)},
        )
        return response

    def delete_account(self, account_id: int, *, principal: Optional[Principal] = None) -> None:
        with self._locks.hold(account_id):
            with self._store.transaction() as repo:
                account = repo.get_account(account_id, for_update=True)
                if account is None:
                    raise AccountNotFoundError(f"Account {account_id} not found")
                repo.delete_account(account)
        logger.info(
            "account.deleted",
            extra={"account_id": account_id, "actor_id": actor_id(principal)},
        )
