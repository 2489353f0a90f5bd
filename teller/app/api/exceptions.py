from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from ..core.errors import (
    AccountNotEligibleError,
    AccountNotFoundError,
    BankError,
    IllegalAmountError,
    InvalidLoginError,
    NotAuthenticatedError,
    NotAuthorizedError,
    TransientStoreError,
    UserNotFoundError,
)

logger = logging.getLogger(__name__)

STATUS_BY_ERROR: dict[type[BankError], int] = {
    NotAuthenticatedError: 401,
    NotAuthorizedError: 403,
    IllegalAmountError: 400,
    InvalidLoginError: 400,
    AccountNotFoundError: 404,
    UserNotFoundError: 404,
    AccountNotEligibleError: 409,
    TransientStoreError: 503,
}


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(BankError)
    async def bank_error_handler(request: Request, exc: BankError) -> JSONResponse:
        status_code = next(
            (code for kind, code in STATUS_BY_ERROR.items() if isinstance(exc, kind)),
            400,
        )
        if status_code == 503:
            logger.warning("store.unavailable", extra={"path": request.url.path})
        headers = {"WWW-Authenticate": "Bearer"} if status_code == 401 else None
        return JSONResponse(
            status_code=status_code, content={"detail": str(exc)}, headers=headers
        )

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"detail": str(exc)})
