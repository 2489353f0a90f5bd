from .db import Account as AccountModel
from .db import AccountStatus as AccountStatusModel
from .db import AccountType as AccountTypeModel
from .db import User as UserModel
from .db import UserAccount as UserAccountModel
from .db import UserSession as UserSessionModel
from .enums import AccountStatusCode, AccountTypeCode, Role
from .schemas import (
    AccountCreate,
    AccountResponse,
    AccountStatusResponse,
    AccountTypeResponse,
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

__all__ = [
    "AccountCreate",
    "AccountResponse",
    "AccountStatusResponse",
    "AccountTypeResponse",
    "AccountUpdate",
    "AccrualReport",
    "AmountRequest",
    "LoginRequest",
    "LoginResponse",
    "MessageResponse",
    "PassTimeRequest",
    "Principal",
    "TransferRequest",
    "TransferResponse",
    "UserCreate",
    "UserResponse",
    "UserUpdate",
    "AccountStatusCode",
    "AccountTypeCode",
    "Role",
    "AccountModel",
    "AccountStatusModel",
    "AccountTypeModel",
    "UserModel",
    "UserAccountModel",
    "UserSessionModel",
]
