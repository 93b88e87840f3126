"""Economy error taxonomy.

Every rejection an economy operation can produce is an ``EconomyError``
subclass carrying a message that is safe to show to the user. The message
handler replies with ``error.message``; anything that is not an
``EconomyError`` is treated as a bug and answered generically.
"""

from __future__ import annotations


class EconomyError(Exception):
    """Base class for user-facing economy rejections."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(EconomyError):
    """Malformed or out-of-range input."""


class InsufficientFunds(EconomyError):
    """Wallet or bank balance cannot cover the requested amount."""

    def __init__(
        self,
        current: int,
        required: int,
        account: str = "wallet",
        message: str | None = None,
    ) -> None:
        self.current = current
        self.required = required
        self.account = account
        super().__init__(
            message
            or f"❌ Insufficient {account} balance. You have {current:,} but need {required:,}."
        )


class CooldownActive(EconomyError):
    """Action was used too recently."""

    def __init__(self, action: str, remaining_minutes: int) -> None:
        self.action = action
        self.remaining_minutes = remaining_minutes
        super().__init__(
            f"⏰ You can {action} again in {_format_minutes(remaining_minutes)}."
        )


class OperationInProgress(EconomyError):
    """The same user already has the same operation in flight."""

    def __init__(self, key: object) -> None:
        self.key = key
        super().__init__("⏳ Your previous command is still being processed. Please wait.")


class InvalidTarget(EconomyError):
    """Target is missing or is the actor themselves."""


class TargetNotFound(EconomyError):
    """Referenced account does not exist."""


class PermissionDenied(EconomyError):
    """Actor lacks the admin or owner capability."""

    def __init__(self, message: str = "🚫 You don't have permission to use this command.") -> None:
        super().__init__(message)


class StorageUnavailable(EconomyError):
    """The ledger store could not be reached."""

    def __init__(self, message: str = "❌ The economy is temporarily unavailable. Please try again.") -> None:
        super().__init__(message)


class TransactionFailed(EconomyError):
    """A unit of work was rolled back for a non-business reason."""

    def __init__(self, message: str = "❌ Transaction failed. Nothing was changed, please try again.") -> None:
        super().__init__(message)


def _format_minutes(minutes: int) -> str:
    if minutes >= 60:
        hours, mins = divmod(minutes, 60)
        return f"{hours}h {mins}m" if mins else f"{hours}h"
    return f"{minutes}m"
