from functools import lru_cache
from typing import Optional

from fastapi import Depends, Header

from ..models import Principal
from ..services import (
    AccountLocks,
    AccountService,
    AccountStore,
    AuthorizationPolicy,
    IdentityResolver,
    TransactionEngine,
    UserService,
)
from .config import get_settings
from .db import open_session

# Services are built once and shared by every request thread. They reach the
# database through ``open_session``, which always uses the current engine.


@lru_cache(maxsize=1)
def get_account_store() -> AccountStore:
    return AccountStore(open_session)


@lru_cache(maxsize=1)
def get_account_locks() -> AccountLocks:
    return AccountLocks(timeout=get_settings().lock_timeout_seconds)


@lru_cache(maxsize=1)
def get_identity_resolver() -> IdentityResolver:
    return IdentityResolver(open_session)


@lru_cache(maxsize=1)
def get_policy() -> AuthorizationPolicy:
    return AuthorizationPolicy(get_account_store().list_owners)


@lru_cache(maxsize=1)
def get_transaction_engine() -> TransactionEngine:
    return TransactionEngine(
        get_account_store(),
        locks=get_account_locks(),
        retry_attempts=get_settings().store_retry_attempts,
    )


@lru_cache(maxsize=1)
def get_account_service() -> AccountService:
    return AccountService(get_account_store(), get_account_locks())


@lru_cache(maxsize=1)
def get_user_service() -> UserService:
    return UserService(open_session)


def get_session_token(
    authorization: Optional[str] = Header(default=None, alias="Authorization"),
) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def get_principal(
    token: Optional[str] = Depends(get_session_token),
    resolver: IdentityResolver = Depends(get_identity_resolver),
) -> Optional[Principal]:
    return resolver.resolve(token)
