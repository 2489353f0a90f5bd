class BankError(Exception):
    """Base class for every classified failure the core reports."""


class NotAuthenticatedError(BankError):
    """Raised when no principal could be resolved for the session."""


class NotAuthorizedError(BankError):
    """Raised when the principal fails a role or ownership check."""


class IllegalAmountError(BankError):
    """Raised for a non-positive amount or a movement exceeding the balance."""


class AccountNotFoundError(BankError):
    """Raised when an account id is missing from the store."""


class AccountNotEligibleError(BankError):
    """Raised when the account status forbids a balance mutation."""


class TransientStoreError(BankError):
    """Raised when the store failed in a way that is safe to retry."""


class UserNotFoundError(BankError):
    """Raised when a user id is missing from the store."""


class InvalidLoginError(BankError):
    """Raised when login credentials do not match a user."""
