from __future__ import annotations

import logging
from collections.abc import Callable
from decimal import ROUND_HALF_EVEN, Decimal, InvalidOperation
from typing import Any, Optional, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from tenacity import (
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ..core.errors import (
    AccountNotEligibleError,
    AccountNotFoundError,
    IllegalAmountError,
    TransientStoreError,
)
from ..models import (
    AccountModel,
    AccountResponse,
    AccountStatusCode,
    AccountTypeCode,
    AccrualReport,
    Principal,
    TransferResponse,
)
from ..models.db import BALANCE_PLACES
from ..models.schemas import MAX_ACCRUAL_MONTHS
from .locks import AccountLocks
from .repository import AccountRepository, AccountStore, account_to_response

logger = logging.getLogger(__name__)

BALANCE_QUANTUM = Decimal(1).scaleb(-BALANCE_PLACES)

T = TypeVar("T")


def quantize_balance(value: Decimal) -> Decimal:
    return value.quantize(BALANCE_QUANTUM, rounding=ROUND_HALF_EVEN)


def actor_id(principal: Optional[Principal]) -> Optional[int]:
    return principal.user_id if principal is not None else None


def _to_decimal(value: Any, what: str) -> Decimal:
    if isinstance(value, float):
        value = str(value)
    try:
        result = Decimal(value)
    except (InvalidOperation, TypeError, ValueError) as exc:
        raise IllegalAmountError(f"{what} must be a number") from exc
    if not result.is_finite():
        raise IllegalAmountError(f"{what} must be a finite number")
    return result


class TransactionEngine:
    """Balance mutations that keep every account at or above zero.

    Each operation re-reads the account inside its own store transaction
    while holding the per-account lock, so concurrent requests against the
    same account are serialized and nothing is cached between calls.
    """

    def __init__(
        self,
        store: AccountStore,
        locks: Optional[AccountLocks] = None,
        retry_attempts: int = 3,
        retry_wait: Optional[Callable[..., float]] = None,
    ) -> None:
        self._store = store
        self._locks = locks if locks is not None else AccountLocks()
        self._retry_attempts = max(1, retry_attempts)
        self._retry_wait = retry_wait or wait_exponential(multiplier=0.05, max=1)

    # ------------------------------------------------------------------
    # Helper utilities
    # ------------------------------------------------------------------
    def _validate_amount(self, amount: Any) -> Decimal:
        value = _to_decimal(amount, "Amount")
        if value <= 0:
            raise IllegalAmountError("The amount must be greater than 0")
        if value != quantize_balance(value):
            raise IllegalAmountError(
                f"The amount cannot have more than {BALANCE_PLACES} decimal places"
            )
        return value

    def _load_open_account(self, repo: AccountRepository, account_id: int) -> AccountModel:
        account = repo.get_account(account_id, for_update=True)
        if account is None:
            raise AccountNotFoundError(f"Account {account_id} not found")
        if account.status_id != AccountStatusCode.OPEN:
            raise AccountNotEligibleError(
                f"Account {account_id} is not open for balance changes"
            )
        return account

    def _describe(self, repo: AccountRepository, account_id: int) -> AccountResponse:
        return account_to_response(repo.find_account(account_id))

    def _locked(self, account_ids: tuple[int, ...], work: Callable[[AccountRepository], T]) -> T:
        with self._locks.hold(*account_ids):
            with self._store.transaction() as repo:
                return work(repo)

    def _with_retry(self, operation: str, attempt: Callable[[], T]) -> T:
        retrying = Retrying(
            stop=stop_after_attempt(self._retry_attempts),
            wait=self._retry_wait,
            retry=retry_if_exception_type(TransientStoreError),
            before_sleep=lambda state: logger.warning(
                "store.transient",
                extra={"operation": operation, "attempt": state.attempt_number},
            ),
            reraise=True,
        )
        return retrying(attempt)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def deposit(
        self, account_id: int, amount: Any, *, principal: Optional[Principal] = None
    ) -> AccountResponse:
        value = self._validate_amount(amount)

        def apply(repo: AccountRepository) -> AccountResponse:
            account = self._load_open_account(repo, account_id)
            repo.set_balance(account, quantize_balance(account.balance + value))
            return self._describe(repo, account_id)

        result = self._with_retry("deposit", lambda: self._locked((account_id,), apply))
        logger.info(
            "account.deposit",
            extra={
                "account_id": account_id,
                "amount": str(value),
                "balance": str(result.balance),
                "actor_id": actor_id(principal),
            },
        )
        return result

    def withdraw(
        self, account_id: int, amount: Any, *, principal: Optional[Principal] = None
    ) -> AccountResponse:
        value = self._validate_amount(amount)

        def apply(repo: AccountRepository) -> AccountResponse:
            account = self._load_open_account(repo, account_id)
            if value > account.balance:
                raise IllegalAmountError(
                    f"Insufficient funds: {account.balance} available, {value} requested"
                )
            repo.set_balance(account, quantize_balance(account.balance - value))
            return self._describe(repo, account_id)

        result = self._with_retry("withdraw", lambda: self._locked((account_id,), apply))
        logger.info(
            "account.withdraw",
            extra={
                "account_id": account_id,
                "amount": str(value),
                "balance": str(result.balance),
                "actor_id": actor_id(principal),
            },
        )
        return result

    def transfer(
        self,
        source_account_id: int,
        target_account_id: int,
        amount: Any,
        *,
        principal: Optional[Principal] = None,
    ) -> TransferResponse:
        """Move ``amount`` between two accounts as one store transaction.

        Debit and credit commit together or not at all. A transient failure
        is reported to the caller rather than retried, since the caller is
        the only party that can tell whether a restart is wanted.
        """
        value = self._validate_amount(amount)
        if source_account_id == target_account_id:
            raise IllegalAmountError("Cannot transfer to the same account")

        def apply(repo: AccountRepository) -> TransferResponse:
            source = self._load_open_account(repo, source_account_id)
            target = self._load_open_account(repo, target_account_id)
            if value > source.balance:
                raise IllegalAmountError(
                    f"Insufficient funds: {source.balance} available, {value} requested"
                )
            repo.set_balance(source, quantize_balance(source.balance - value))
            repo.set_balance(target, quantize_balance(target.balance + value))
            return TransferResponse(
                source=self._describe(repo, source_account_id),
                target=self._describe(repo, target_account_id),
            )

        result = self._locked((source_account_id, target_account_id), apply)
        logger.info(
            "account.transfer",
            extra={
                "source_account_id": source_account_id,
                "target_account_id": target_account_id,
                "amount": str(value),
                "actor_id": actor_id(principal),
            },
        )
        return result

    def accrue_interest(
        self, months: int, rate: Any, *, principal: Optional[Principal] = None
    ) -> AccrualReport:
        """Compound ``rate`` onto every Savings account once per month.

        Accounts are processed independently. An account that cannot be
        updated is listed in ``failed`` and the batch carries on.
        """
        if isinstance(months, bool) or not isinstance(months, int) or months < 0:
            raise IllegalAmountError("The number of months must be a non-negative integer")
        if months > MAX_ACCRUAL_MONTHS:
            raise IllegalAmountError(
                f"Interest can be accrued for at most {MAX_ACCRUAL_MONTHS} months at once"
            )
        period_rate = _to_decimal(rate, "Rate")
        if period_rate < 0:
            raise IllegalAmountError("The interest rate cannot be negative")

        report = AccrualReport(months=months, rate=period_rate)
        if months == 0:
            return report

        savings = self._with_retry(
            "list_savings",
            lambda: self._store.list_accounts_by_type(AccountTypeCode.SAVINGS),
        )
        growth = 1 + period_rate

        for snapshot in savings:
            account_id = snapshot.account_id

            def compound(repo: AccountRepository, account_id: int = account_id) -> AccountResponse:
                account = self._load_open_account(repo, account_id)
                balance = account.balance
                for _ in range(months):
                    balance = balance * growth
                repo.set_balance(account, quantize_balance(balance))
                return self._describe(repo, account_id)

            try:
                self._with_retry(
                    "accrue_interest",
                    lambda compound=compound, account_id=account_id: self._locked(
                        (account_id,), compound
                    ),
                )
            except (
                AccountNotFoundError,
                AccountNotEligibleError,
                TransientStoreError,
                SQLAlchemyError,
            ) as exc:
                report.failed.append(account_id)
                logger.warning(
                    "interest.account_failed",
                    extra={"account_id": account_id, "reason": exc.__class__.__name__},
                )
            else:
                report.succeeded += 1

        logger.info(
            "interest.accrued",
            extra={
                "months": months,
                "rate": str(period_rate),
                "succeeded": report.succeeded,
                "failed": report.failed,
                "actor_id": actor_id(principal),
            },
        )
        return report
