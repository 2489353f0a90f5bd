import logging
from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal

import pytest
from sqlalchemy.exc import DataError, OperationalError
from tenacity import wait_none

from ..core.errors import (
    AccountNotEligibleError,
    AccountNotFoundError,
    IllegalAmountError,
    TransientStoreError,
)
from ..models import AccountStatusCode, AccountTypeCode, Principal, Role
from ..models.schemas import MAX_ACCRUAL_MONTHS
from ..services import AccountLocks, AccountRepository, AccountStore, TransactionEngine


def _store_failure() -> OperationalError:
    return OperationalError("UPDATE account", {}, Exception("database is locked"))


def test_deposit_adds_amount(transaction_engine, make_account, balance_of) -> None:
    account_id = make_account("100")

    result = transaction_engine.deposit(account_id, Decimal("25.50"))

    assert result.account_id == account_id
    assert result.balance == Decimal("125.50")
    assert result.status.status == "Open"
    assert balance_of(account_id) == Decimal("125.50")


@pytest.mark.parametrize("amount", [Decimal("0"), Decimal("-5"), "NaN", Decimal("0.00001")])
def test_deposit_rejects_illegal_amounts(transaction_engine, make_account, balance_of, amount) -> None:
    account_id = make_account("100")

    with pytest.raises(IllegalAmountError):
        transaction_engine.deposit(account_id, amount)

    assert balance_of(account_id) == Decimal("100")


def test_withdraw_within_balance(transaction_engine, make_account, balance_of) -> None:
    account_id = make_account("100")

    result = transaction_engine.withdraw(account_id, Decimal("100"))

    assert result.balance == Decimal("0")
    assert balance_of(account_id) == Decimal("0")


@pytest.mark.parametrize("amount", [Decimal("100.01"), Decimal("0"), Decimal("-1")])
def test_withdraw_illegal_amount_leaves_balance(transaction_engine, make_account, balance_of, amount) -> None:
    account_id = make_account("100")

    with pytest.raises(IllegalAmountError):
        transaction_engine.withdraw(account_id, amount)

    assert balance_of(account_id) == Decimal("100")


def test_missing_account_is_not_found(transaction_engine) -> None:
    with pytest.raises(AccountNotFoundError):
        transaction_engine.deposit(999, Decimal("1"))


@pytest.mark.parametrize(
    "status", [AccountStatusCode.PENDING, AccountStatusCode.CLOSED, AccountStatusCode.DENIED]
)
def test_only_open_accounts_accept_mutations(transaction_engine, make_account, balance_of, status) -> None:
    account_id = make_account("50", status=status)

    with pytest.raises(AccountNotEligibleError):
        transaction_engine.deposit(account_id, Decimal("1"))
    with pytest.raises(AccountNotEligibleError):
        transaction_engine.withdraw(account_id, Decimal("1"))

    assert balance_of(account_id) == Decimal("50")


def test_transfer_moves_funds(transaction_engine, make_account, balance_of) -> None:
    source = make_account("200")
    target = make_account("10")

    result = transaction_engine.transfer(source, target, Decimal("75"))

    assert result.source.balance == Decimal("125")
    assert result.target.balance == Decimal("85")
    assert balance_of(source) == Decimal("125")
    assert balance_of(target) == Decimal("85")


def test_transfer_validation(transaction_engine, make_account, balance_of) -> None:
    source = make_account("50")
    target = make_account("0")
    closed = make_account("0", status=AccountStatusCode.CLOSED)

    with pytest.raises(IllegalAmountError):
        transaction_engine.transfer(source, target, Decimal("50.01"))
    with pytest.raises(IllegalAmountError):
        transaction_engine.transfer(source, source, Decimal("1"))
    with pytest.raises(AccountNotFoundError):
        transaction_engine.transfer(source, 999, Decimal("1"))
    with pytest.raises(AccountNotEligibleError):
        transaction_engine.transfer(source, closed, Decimal("1"))

    assert balance_of(source) == Decimal("50")
    assert balance_of(target) == Decimal("0")


def test_transfer_rolls_back_when_credit_fails(session_factory, make_account, balance_of) -> None:
    source = make_account("80")
    target = make_account("20")

    class FailingCreditRepository(AccountRepository):
        def set_balance(self, account, balance):
            if account.id == target:
                raise _store_failure()
            return super().set_balance(account, balance)

    engine = TransactionEngine(AccountStore(session_factory, FailingCreditRepository))

    with pytest.raises(TransientStoreError):
        engine.transfer(source, target, Decimal("30"))

    assert balance_of(source) == Decimal("80")
    assert balance_of(target) == Decimal("20")


def test_transfer_rolls_back_on_unexpected_error(session_factory, make_account, balance_of) -> None:
    source = make_account("80")
    target = make_account("20")

    class CrashingRepository(AccountRepository):
        def find_account(self, account_id):
            raise RuntimeError("crash after both writes")

    engine = TransactionEngine(AccountStore(session_factory, CrashingRepository))

    with pytest.raises(RuntimeError):
        engine.transfer(source, target, Decimal("30"))

    assert balance_of(source) == Decimal("80")
    assert balance_of(target) == Decimal("20")


def test_transfer_is_not_retried(session_factory, make_account) -> None:
    source = make_account("80")
    target = make_account("20")
    calls = []

    class FlakyRepository(AccountRepository):
        def get_account(self, account_id, *, for_update=False):
            calls.append(account_id)
            raise _store_failure()

    engine = TransactionEngine(
        AccountStore(session_factory, FlakyRepository), retry_attempts=5, retry_wait=wait_none()
    )

    with pytest.raises(TransientStoreError):
        engine.transfer(source, target, Decimal("1"))

    assert calls == [source]


def test_single_account_operations_retry_transient_failures(session_factory, make_account, balance_of) -> None:
    account_id = make_account("10")
    failures = {"left": 2}

    class FlakyRepository(AccountRepository):
        def set_balance(self, account, balance):
            if failures["left"]:
                failures["left"] -= 1
                raise _store_failure()
            return super().set_balance(account, balance)

    engine = TransactionEngine(
        AccountStore(session_factory, FlakyRepository), retry_attempts=3, retry_wait=wait_none()
    )

    result = engine.deposit(account_id, Decimal("5"))

    assert result.balance == Decimal("15")
    assert balance_of(account_id) == Decimal("15")


def test_retries_are_bounded(session_factory, make_account, balance_of) -> None:
    account_id = make_account("10")
    attempts = []

    class BrokenRepository(AccountRepository):
        def set_balance(self, account, balance):
            attempts.append(balance)
            raise _store_failure()

    engine = TransactionEngine(
        AccountStore(session_factory, BrokenRepository), retry_attempts=3, retry_wait=wait_none()
    )

    with pytest.raises(TransientStoreError):
        engine.withdraw(account_id, Decimal("5"))

    assert len(attempts) == 3
    assert balance_of(account_id) == Decimal("10")


def test_concurrent_withdrawals_never_overdraw(transaction_engine, make_account, balance_of) -> None:
    account_id = make_account("100")

    def attempt(_):
        try:
            transaction_engine.withdraw(account_id, Decimal("20"))
        except IllegalAmountError:
            return False
        return True

    with ThreadPoolExecutor(max_workers=10) as pool:
        outcomes = list(pool.map(attempt, range(10)))

    assert outcomes.count(True) == 5
    assert balance_of(account_id) == Decimal("0")


def test_concurrent_exact_withdrawals_drain_account(transaction_engine, make_account, balance_of) -> None:
    account_id = make_account("100")

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(lambda _: transaction_engine.withdraw(account_id, Decimal("12.5")), range(8)))

    assert len(results) == 8
    assert min(result.balance for result in results) == Decimal("0")
    assert balance_of(account_id) == Decimal("0")


def test_opposite_transfers_do_not_deadlock(transaction_engine, make_account, balance_of) -> None:
    first = make_account("500")
    second = make_account("500")

    def move(index):
        if index % 2:
            return transaction_engine.transfer(first, second, Decimal("5"))
        return transaction_engine.transfer(second, first, Decimal("5"))

    with ThreadPoolExecutor(max_workers=6) as pool:
        list(pool.map(move, range(40)))

    assert balance_of(first) + balance_of(second) == Decimal("1000")
    assert balance_of(first) == Decimal("500")


def test_accrue_interest_compounds_per_month(transaction_engine, make_account, balance_of) -> None:
    savings = make_account("100", account_type=AccountTypeCode.SAVINGS)
    checking = make_account("100", account_type=AccountTypeCode.CHECKING)

    report = transaction_engine.accrue_interest(3, Decimal("0.01"))

    assert balance_of(savings) == Decimal("103.0301")
    assert balance_of(checking) == Decimal("100")
    assert report.months == 3
    assert report.succeeded == 1
    assert report.failed == []


def test_accrue_interest_reports_failed_accounts(transaction_engine, make_account, balance_of) -> None:
    closed = make_account("100", status=AccountStatusCode.CLOSED, account_type=AccountTypeCode.SAVINGS)
    healthy = make_account("200", account_type=AccountTypeCode.SAVINGS)

    report = transaction_engine.accrue_interest(1, Decimal("0.5"))

    assert report.succeeded == 1
    assert report.failed == [closed]
    assert balance_of(closed) == Decimal("100")
    assert balance_of(healthy) == Decimal("300")


def test_accrue_interest_continues_after_store_failure(session_factory, make_account, balance_of) -> None:
    broken = make_account("100", account_type=AccountTypeCode.SAVINGS)
    healthy = make_account("100", account_type=AccountTypeCode.SAVINGS)

    class PartlyBrokenRepository(AccountRepository):
        def set_balance(self, account, balance):
            if account.id == broken:
                raise _store_failure()
            return super().set_balance(account, balance)

    engine = TransactionEngine(
        AccountStore(session_factory, PartlyBrokenRepository), retry_attempts=2, retry_wait=wait_none()
    )

    report = engine.accrue_interest(2, Decimal("0.1"))

    assert report.failed == [broken]
    assert report.succeeded == 1
    assert balance_of(broken) == Decimal("100")
    assert balance_of(healthy) == Decimal("121")


def test_accrue_interest_zero_months_is_noop(transaction_engine, make_account, balance_of) -> None:
    savings = make_account("100", account_type=AccountTypeCode.SAVINGS)

    report = transaction_engine.accrue_interest(0, Decimal("0.01"))

    assert report.succeeded == 0
    assert report.failed == []
    assert balance_of(savings) == Decimal("100")


def test_accrue_interest_rejects_negative_months(transaction_engine) -> None:
    with pytest.raises(IllegalAmountError):
        transaction_engine.accrue_interest(-1, Decimal("0.01"))


def test_lock_wait_timeout_is_transient(store, make_account) -> None:
    account_id = make_account("10")
    locks = AccountLocks(timeout=0.01)
    engine = TransactionEngine(
        store, locks=locks, retry_attempts=1, retry_wait=wait_none()
    )

    with locks.hold(account_id):
        with ThreadPoolExecutor(max_workers=1) as pool:
            future = pool.submit(engine.deposit, account_id, Decimal("1"))
            with pytest.raises(TransientStoreError):
                future.result()


def test_accrue_interest_survives_non_transient_store_error(session_factory, make_account, balance_of) -> None:
    first = make_account("100", account_type=AccountTypeCode.SAVINGS)
    overflowing = make_account("100", account_type=AccountTypeCode.SAVINGS)
    last = make_account("100", account_type=AccountTypeCode.SAVINGS)

    class OverflowingRepository(AccountRepository):
        def set_balance(self, account, balance):
            if account.id == overflowing:
                raise DataError("UPDATE account", {}, Exception("numeric field overflow"))
            return super().set_balance(account, balance)

    engine = TransactionEngine(
        AccountStore(session_factory, OverflowingRepository), retry_attempts=3, retry_wait=wait_none()
    )

    report = engine.accrue_interest(1, Decimal("0.1"))

    assert report.failed == [overflowing]
    assert report.succeeded == 2
    assert balance_of(first) == Decimal("110")
    assert balance_of(overflowing) == Decimal("100")
    assert balance_of(last) == Decimal("110")


def test_accrue_interest_rejects_too_many_months(transaction_engine, make_account, balance_of) -> None:
    savings = make_account("100", account_type=AccountTypeCode.SAVINGS)

    with pytest.raises(IllegalAmountError):
        transaction_engine.accrue_interest(MAX_ACCRUAL_MONTHS + 1, Decimal("0.01"))

    assert balance_of(savings) == Decimal("100")


def test_lock_registry_is_empty_after_operations(store, make_account) -> None:
    source = make_account("100")
    locks = AccountLocks(timeout=5)
    engine = TransactionEngine(store, locks=locks, retry_attempts=1, retry_wait=wait_none())

    for missing in range(1000, 1050):
        with pytest.raises(AccountNotFoundError):
            engine.transfer(source, missing, Decimal("1"))
    assert len(locks) == 0

    with ThreadPoolExecutor(max_workers=5) as pool:
        list(pool.map(lambda _: engine.withdraw(source, Decimal("10")), range(5)))

    assert len(locks) == 0


def test_lock_registry_drops_entry_after_timeout() -> None:
    locks = AccountLocks(timeout=0.01)

    with locks.hold(1, 2):
        with ThreadPoolExecutor(max_workers=1) as pool:
            future = pool.submit(lambda: locks.hold(2).__enter__())
            with pytest.raises(TransientStoreError):
                future.result()
        assert len(locks) == 2

    assert len(locks) == 0


def test_mutations_log_the_acting_principal(transaction_engine, make_account, caplog) -> None:
    caplog.set_level(logging.INFO)
    source = make_account("100")
    target = make_account("0")
    admin = Principal(user_id=42, role=Role.ADMIN)

    transaction_engine.deposit(source, Decimal("5"), principal=admin)
    transaction_engine.withdraw(source, Decimal("5"), principal=admin)
    transaction_engine.transfer(source, target, Decimal("5"), principal=admin)
    transaction_engine.accrue_interest(1, Decimal("0.01"), principal=admin)

    events = {
        record.getMessage(): record.actor_id
        for record in caplog.records
        if hasattr(record, "actor_id")
    }
    assert events == {
        "account.deposit": 42,
        "account.withdraw": 42,
        "account.transfer": 42,
        "interest.accrued": 42,
    }
