from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from typing import NoReturn, Optional

from ..core.errors import NotAuthenticatedError, NotAuthorizedError
from ..models import Principal, Role
from .repository import SessionFactory, UserRepository, transaction

logger = logging.getLogger(__name__)

STAFF = frozenset({Role.EMPLOYEE, Role.ADMIN})
ADMIN_ONLY = frozenset({Role.ADMIN})


class IdentityResolver:
    """Maps an opaque session handle to the principal that opened it."""

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    def resolve(self, session_handle: Optional[str]) -> Optional[Principal]:
        if not session_handle:
            return None
        with transaction(self._session_factory, UserRepository) as repo:
            return repo.find_principal(session_handle)


class AuthorizationPolicy:
    """Guard vocabulary evaluated before every sensitive operation.

    Role checks use exact set membership: Admin only passes a guard whose
    allowed set lists Admin. Each guard returns the principal on success and
    raises ``NotAuthenticatedError`` or ``NotAuthorizedError`` otherwise.
    The only side effect is the ownership lookup in
    ``require_account_owner_or_role``.
    """

    def __init__(self, owner_lookup: Callable[[int], set[int]]) -> None:
        self._owner_lookup = owner_lookup

    def require_logged_in(self, principal: Optional[Principal]) -> Principal:
        if principal is None:
            raise NotAuthenticatedError("You are not logged in")
        return principal

    def require_role(
        self, principal: Optional[Principal], allowed: Iterable[Role]
    ) -> Principal:
        principal = self.require_logged_in(principal)
        if principal.role not in frozenset(allowed):
            self._deny(principal, "role")
        return principal

    def require_owner_or_role(
        self,
        principal: Optional[Principal],
        target_user_id: int,
        allowed: Iterable[Role],
    ) -> Principal:
        principal = self.require_logged_in(principal)
        if principal.user_id == target_user_id or principal.role in frozenset(allowed):
            return principal
        self._deny(principal, "owner", target_user_id=target_user_id)

    def require_account_owner_or_role(
        self,
        principal: Optional[Principal],
        account_id: int,
        allowed: Iterable[Role],
    ) -> Principal:
        principal = self.require_logged_in(principal)
        if principal.role in frozenset(allowed):
            return principal
        if principal.user_id in self._owner_lookup(account_id):
            return principal
        self._deny(principal, "account_owner", account_id=account_id)

    def _deny(self, principal: Principal, check: str, **context) -> NoReturn:
        logger.info(
            "auth.denied",
            extra={
                "user_id": principal.user_id,
                "role": principal.role.value,
                "check": check,
                **context,
            },
        )
        raise NotAuthorizedError("You are not authorized")
