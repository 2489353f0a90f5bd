from __future__ import annotations

import logging
from typing import Any, Optional

from sqlalchemy import event
from sqlmodel import Session, SQLModel, create_engine, select

from ..models import db as _db_models  # noqa: F401 - ensure models register with metadata
from ..models import (
    AccountStatusCode,
    AccountStatusModel,
    AccountTypeCode,
    AccountTypeModel,
    Role,
    UserModel,
)
from .config import get_settings

logger = logging.getLogger(__name__)


def create_engine_for_url(database_url: str, timeout: Optional[float] = None):
    connect_args: dict[str, Any] = {}
    is_sqlite = database_url.startswith("sqlite")
    if is_sqlite:
        connect_args = {"check_same_thread": False}
        if timeout is not None:
            connect_args["timeout"] = timeout
    new_engine = create_engine(database_url, echo=False, connect_args=connect_args)
    if is_sqlite:
        _use_immediate_transactions(new_engine)
    return new_engine


def _use_immediate_transactions(sqlite_engine) -> None:
    # pysqlite defers BEGIN until the first write, which lets two readers race
    # into a write conflict. Take the write lock up front instead.
    @event.listens_for(sqlite_engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(sqlite_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


settings = get_settings()
engine = create_engine_for_url(settings.database_url, timeout=settings.store_timeout_seconds)


def init_db() -> None:
    SQLModel.metadata.create_all(engine)
    with Session(engine) as session:
        for code in AccountStatusCode:
            session.merge(AccountStatusModel(id=code.value, status=code.label))
        for code in AccountTypeCode:
            session.merge(AccountTypeModel(id=code.value, type=code.label))
        _ensure_bootstrap_admin(session)
        session.commit()


def _ensure_bootstrap_admin(session: Session) -> None:
    current = get_settings()
    username = current.bootstrap_admin_username
    password = current.bootstrap_admin_password
    if not username or not password:
        return
    existing = session.exec(select(UserModel).where(UserModel.username == username)).first()
    if existing is not None:
        return
    session.add(UserModel(username=username, password=password, role=Role.ADMIN))
    logger.info("user.bootstrap_admin", extra={"username": username})


def open_session() -> Session:
    return Session(engine)


def set_engine(new_engine) -> None:
    global engine
    engine = new_engine
