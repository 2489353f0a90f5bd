from typing import Optional

from fastapi import APIRouter, Depends, status

from ..core.config import get_settings
from ..core.dependencies import (
    get_account_service,
    get_policy,
    get_principal,
    get_session_token,
    get_transaction_engine,
    get_user_service,
)
from ..models import (
    AccountCreate,
    AccountResponse,
    AccountStatusCode,
    AccountUpdate,
    AccrualReport,
    AmountRequest,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    PassTimeRequest,
    Principal,
    TransferRequest,
    TransferResponse,
    UserCreate,
    UserResponse,
    UserUpdate,
)
from ..services import (
    ADMIN_ONLY,
    STAFF,
    AccountService,
    AuthorizationPolicy,
    TransactionEngine,
    UserService,
)


session_router = APIRouter(tags=["session"])

@session_router.get("/", response_model=MessageResponse)
def index() -> MessageResponse:
    return MessageResponse(message="POST your credentials to /login to access more of the site")

@session_router.post("/login", response_model=LoginResponse)
def login(
    payload: LoginRequest,
    users: UserService = Depends(get_user_service),
) -> LoginResponse:
    return users.login(payload.username, payload.password)

@session_router.post("/logout", response_model=MessageResponse)
def logout(
    token: Optional[str] = Depends(get_session_token),
    users: UserService = Depends(get_user_service),
) -> MessageResponse:
    if token:
        users.logout(token)
    return MessageResponse(message="You have been logged out")


users_router = APIRouter(prefix="/users", tags=["users"])

@users_router.get("", response_model=list[UserResponse])
def list_users(
    principal: Optional[Principal] = Depends(get_principal),
    policy: AuthorizationPolicy = Depends(get_policy),
    users: UserService = Depends(get_user_service),
) -> list[UserResponse]:
    policy.require_role(principal, STAFF)
    return users.list_users()

@users_router.get("/{user_id}", response_model=UserResponse)
def get_user(
    user_id: int,
    principal: Optional[Principal] = Depends(get_principal),
    policy: AuthorizationPolicy = Depends(get_policy),
    users: UserService = Depends(get_user_service),
) -> UserResponse:
    policy.require_owner_or_role(principal, user_id, STAFF)
    return users.get_user(user_id)

@users_router.post("", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
def create_user(
    payload: UserCreate,
    principal: Optional[Principal] = Depends(get_principal),
    policy: AuthorizationPolicy = Depends(get_policy),
    users: UserService = Depends(get_user_service),
) -> UserResponse:
    principal = policy.require_role(principal, STAFF)
    return users.create_user(payload, principal=principal)

@users_router.put("", response_model=UserResponse)
def update_user(
    payload: UserUpdate,
    principal: Optional[Principal] = Depends(get_principal),
    policy: AuthorizationPolicy = Depends(get_policy),
    users: UserService = Depends(get_user_service),
) -> UserResponse:
    principal = policy.require_owner_or_role(principal, payload.user_id, ADMIN_ONLY)
    if payload.role is not None:
        # Only an admin may change anyone's role, including their own.
        policy.require_role(principal, ADMIN_ONLY)
    return users.update_user(payload, principal=principal)


accounts_router = APIRouter(prefix="/accounts", tags=["accounts"])

@accounts_router.get("", response_model=list[AccountResponse])
def list_accounts(
    principal: Optional[Principal] = Depends(get_principal),
    policy: AuthorizationPolicy = Depends(get_policy),
    accounts: AccountService = Depends(get_account_service),
) -> list[AccountResponse]:
    policy.require_role(principal, STAFF)
    return accounts.list_accounts()

@accounts_router.get("/status/{status_id}", response_model=list[AccountResponse])
def list_accounts_by_status(
    status_id: int,
    principal: Optional[Principal] = Depends(get_principal),
    policy: AuthorizationPolicy = Depends(get_policy),
    accounts: AccountService = Depends(get_account_service),
) -> list[AccountResponse]:
    policy.require_role(principal, STAFF)
    return accounts.list_by_status(status_id)

@accounts_router.get("/owner/{user_id}", response_model=list[AccountResponse])
def list_accounts_by_owner(
    user_id: int,
    principal: Optional[Principal] = Depends(get_principal),
    policy: AuthorizationPolicy = Depends(get_policy),
    accounts: AccountService = Depends(get_account_service),
) -> list[AccountResponse]:
    policy.require_owner_or_role(principal, user_id, STAFF)
    return accounts.list_by_owner(user_id)

@accounts_router.get("/{account_id}", response_model=AccountResponse)
def get_account(
    account_id: int,
    principal: Optional[Principal] = Depends(get_principal),
    policy: AuthorizationPolicy = Depends(get_policy),
    accounts: AccountService = Depends(get_account_service),
) -> AccountResponse:
    policy.require_account_owner_or_role(principal, account_id, STAFF)
    return accounts.get_account(account_id)

@accounts_router.post("", response_model=AccountResponse, status_code=status.HTTP_201_CREATED)
def open_account(
    payload: AccountCreate,
    principal: Optional[Principal] = Depends(get_principal),
    policy: AuthorizationPolicy = Depends(get_policy),
    accounts: AccountService = Depends(get_account_service),
) -> AccountResponse:
    principal = policy.require_owner_or_role(principal, payload.user_id, STAFF)
    if payload.balance != 0 or payload.status_id != AccountStatusCode.PENDING:
        # Customers may only apply for an empty account awaiting review.
        policy.require_role(principal, STAFF)
    return accounts.open_account(payload, principal=principal)

@accounts_router.put("", response_model=AccountResponse)
def update_account(
    payload: AccountUpdate,
    principal: Optional[Principal] = Depends(get_principal),
    policy: AuthorizationPolicy = Depends(get_policy),
    accounts: AccountService = Depends(get_account_service),
) -> AccountResponse:
    principal = policy.require_role(principal, ADMIN_ONLY)
    return accounts.update_account(payload, principal=principal)

@accounts_router.delete("/{account_id}", response_model=MessageResponse)
def delete_account(
    account_id: int,
    principal: Optional[Principal] = Depends(get_principal),
    policy: AuthorizationPolicy = Depends(get_policy),
    accounts: AccountService = Depends(get_account_service),
) -> MessageResponse:
    principal = policy.require_role(principal, ADMIN_ONLY)
    accounts.delete_account(account_id, principal=principal)
    return MessageResponse(message=f"Account #{account_id} has been deleted")

@accounts_router.post("/transfer", response_model=TransferResponse)
def transfer(
    payload: TransferRequest,
    principal: Optional[Principal] = Depends(get_principal),
    policy: AuthorizationPolicy = Depends(get_policy),
    engine: TransactionEngine = Depends(get_transaction_engine),
) -> TransferResponse:
    principal = policy.require_account_owner_or_role(
        principal, payload.source_account_id, ADMIN_ONLY
    )
    return engine.transfer(
        payload.source_account_id,
        payload.target_account_id,
        payload.amount,
        principal=principal,
    )

@accounts_router.post("/pass-time", response_model=AccrualReport)
def pass_time(
    payload: PassTimeRequest,
    principal: Optional[Principal] = Depends(get_principal),
    policy: AuthorizationPolicy = Depends(get_policy),
    engine: TransactionEngine = Depends(get_transaction_engine),
) -> AccrualReport:
    principal = policy.require_role(principal, ADMIN_ONLY)
    rate = payload.rate if payload.rate is not None else get_settings().monthly_interest_rate
    return engine.accrue_interest(payload.num_of_months, rate, principal=principal)

@accounts_router.post("/{account_id}/withdraw", response_model=AccountResponse)
def withdraw(
    account_id: int,
    payload: AmountRequest,
    principal: Optional[Principal] = Depends(get_principal),
    policy: AuthorizationPolicy = Depends(get_policy),
    engine: TransactionEngine = Depends(get_transaction_engine),
) -> AccountResponse:
    principal = policy.require_account_owner_or_role(principal, account_id, ADMIN_ONLY)
    return engine.withdraw(account_id, payload.amount, principal=principal)

@accounts_router.post("/{account_id}/deposit", response_model=AccountResponse)
def deposit(
    account_id: int,
    payload: AmountRequest,
    principal: Optional[Principal] = Depends(get_principal),
    policy: AuthorizationPolicy = Depends(get_policy),
    engine: TransactionEngine = Depends(get_transaction_engine),
) -> AccountResponse:
    principal = policy.require_account_owner_or_role(principal, account_id, ADMIN_ONLY)
    return engine.deposit(account_id, payload.amount, principal=principal)

__all__ = ["session_router", "users_router", "accounts_router"]
