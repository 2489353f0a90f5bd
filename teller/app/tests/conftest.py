from decimal import Decimal
from functools import partial

import pytest
from sqlmodel import Session
from tenacity import wait_none

from ..core import db
from ..core.db import create_engine_for_url, init_db, set_engine
from ..models import AccountStatusCode, AccountTypeCode, Role, UserModel
from ..services import AccountLocks, AccountRepository, AccountStore, TransactionEngine


@pytest.fixture
def engine(tmp_path):
    test_engine = create_engine_for_url(f"sqlite:///{tmp_path / 'test.db'}", timeout=5)
    original_engine = db.engine
    set_engine(test_engine)
    init_db()
    yield test_engine
    set_engine(original_engine)
    test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return partial(Session, engine)


@pytest.fixture
def store(session_factory) -> AccountStore:
    return AccountStore(session_factory)


@pytest.fixture
def transaction_engine(store) -> TransactionEngine:
    return TransactionEngine(
        store,
        locks=AccountLocks(timeout=5),
        retry_attempts=3,
        retry_wait=wait_none(),
    )


@pytest.fixture
def make_user(session_factory):
    def _make(username: str, role: Role = Role.CUSTOMER, password: str = "secret") -> int:
        with session_factory() as session:
            user = UserModel(username=username, password=password, role=role)
            session.add(user)
            session.commit()
            session.refresh(user)
            return user.id

    return _make


@pytest.fixture
def make_account(session_factory):
    def _make(
        balance="0",
        status: AccountStatusCode = AccountStatusCode.OPEN,
        account_type: AccountTypeCode = AccountTypeCode.CHECKING,
        owners=(),
    ) -> int:
        with session_factory() as session:
            repo = AccountRepository(session)
            account = repo.add_account(Decimal(balance), status, account_type)
            for user_id in owners:
                repo.add_owner(user_id, account.id)
            session.commit()
            return account.id

    return _make


@pytest.fixture
def balance_of(store):
    def _balance(account_id: int) -> Decimal:
        return store.get_account(account_id).balance

    return _balance
