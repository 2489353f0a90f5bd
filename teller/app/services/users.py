from __future__ import annotations

import logging
import secrets
from typing import Optional

from sqlalchemy.exc import IntegrityError

from ..core.errors import InvalidLoginError, UserNotFoundError
from ..models import LoginResponse, Principal, UserCreate, UserModel, UserResponse, UserUpdate
from .engine import actor_id
from .repository import SessionFactory, UserRepository, transaction

logger = logging.getLogger(__name__)


def user_to_response(user: UserModel) -> UserResponse:
    return UserResponse(
        user_id=user.id,
        username=user.username,
        first_name=user.first_name,
        last_name=user.last_name,
        email=user.email,
        role=user.role,
    )


class UserService:
    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    def _transaction(self):
        return transaction(self._session_factory, UserRepository)

    def list_users(self) -> list[UserResponse]:
        with self._transaction() as repo:
            return [user_to_response(user) for user in repo.list_users()]

    def get_user(self, user_id: int) -> UserResponse:
        with self._transaction() as repo:
            user = repo.get_user(user_id)
            if user is None:
                raise UserNotFoundError(f"User {user_id} not found")
            return user_to_response(user)

    def create_user(
        self, payload: UserCreate, *, principal: Optional[Principal] = None
    ) -> UserResponse:
        try:
            with self._transaction() as repo:
                user = repo.add_user(UserModel(**payload.model_dump()))
                response = user_to_response(user)
        except IntegrityError as exc:
            raise ValueError(f"Username {payload.username} is already taken") from exc
        logger.info(
            "user.created",
            extra={
                "user_id": response.user_id,
                "role": response.role.value,
                "actor_id": actor_id(principal),
            },
        )
        return response

    def update_user(
        self, payload: UserUpdate, *, principal: Optional[Principal] = None
    ) -> UserResponse:
        changes = payload.model_dump(exclude={"user_id"}, exclude_none=True)
        with self._transaction() as repo:
            user = repo.get_user(payload.user_id)
            if user is None:
                raise UserNotFoundError(f"User {payload.user_id} not found")
            for field, value in changes.items():
                setattr(user, field, value)
            response = user_to_response(repo.save_user(user))
        logger.info(
            "user.updated",
            extra={
                "user_id": payload.user_id,
                "fields": sorted(changes),
                "actor_id": actor_id(principal),
            },
        )
        return response

    # Sessions -----------------------------------------------------------
    def login(self, username: str, password: str) -> LoginResponse:
        with self._transaction() as repo:
            user = repo.find_by_username(username)
            if user is None or not secrets.compare_digest(
                user.password.encode("utf-8"), password.encode("utf-8")
            ):
                raise InvalidLoginError("Invalid login credentials")
            token = repo.open_session(user.id)
            response = LoginResponse(token=token, user=user_to_response(user))
        logger.info("auth.login", extra={"user_id": response.user.user_id})
        return response

    def logout(self, token: str) -> None:
        with self._transaction() as repo:
            repo.close_session(token)
