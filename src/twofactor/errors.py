"""Domain errors raised by the 2FA engine.

None of these are transient: retrying the same call with the same code
gives the same answer. ``status_code`` is the HTTP status the API layer
answers with.
"""

from __future__ import annotations


class TwoFactorError(Exception):
    code = "two_factor_error"
    status_code = 400
    default_message = "Two-factor authentication error"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class NotSetUp(TwoFactorError):
    code = "not_set_up"
    default_message = "2FA has not been set up. Generate a new setup first."


class AlreadyEnabled(TwoFactorError):
    code = "already_enabled"
    default_message = "2FA is already enabled"


class NotEnabled(TwoFactorError):
    code = "not_enabled"
    default_message = "2FA is not enabled"


class InvalidCode(TwoFactorError):
    code = "invalid_code"
    default_message = "Invalid code. Please try again."


class Unauthorized(TwoFactorError):
    """Wrong code for a destructive action (disabling 2FA)."""

    code = "unauthorized"
    status_code = 401
    default_message = "Invalid code"


class StoreConflict(TwoFactorError):
    """Concurrent writers kept winning the compare-and-swap race."""

    code = "store_conflict"
    status_code = 409
    default_message = "Concurrent update of 2FA state, please retry"
