from .accounts import AccountService
from .auth import ADMIN_ONLY, STAFF, AuthorizationPolicy, IdentityResolver
from .engine import TransactionEngine
from .locks import AccountLocks
from .repository import AccountRepository, AccountStore, UserRepository
from .users import UserService

__all__ = [
    "ADMIN_ONLY",
    "STAFF",
    "AccountLocks",
    "AccountRepository",
    "AccountService",
    "AccountStore",
    "AuthorizationPolicy",
    "IdentityResolver",
    "TransactionEngine",
    "UserRepository",
    "UserService",
]
