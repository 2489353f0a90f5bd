from __future__ import annotations

import enum


class Role(str, enum.Enum):
    CUSTOMER = "Customer"
    EMPLOYEE = "Employee"
    ADMIN = "Admin"


class AccountStatusCode(enum.IntEnum):
    """Primary keys of the seeded ``account_status`` rows."""

    PENDING = 1
    OPEN = 2
    CLOSED = 3
    DENIED = 4

    @property
    def label(self) -> str:
        return self.name.capitalize()


class AccountTypeCode(enum.IntEnum):
    """Primary keys of the seeded ``account_type`` rows."""

    CHECKING = 1
    SAVINGS = 2

    @property
    def label(self) -> str:
        return self.name.capitalize()
