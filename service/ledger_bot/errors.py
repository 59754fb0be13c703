"""
Error taxonomy for the ledger bot.

Expected business conditions (bad input, missing permission, nothing to
revoke) are raised as LedgerError subclasses and turned into user-facing
text by the accounting service. Anything else propagates to the caller.
"""


class LedgerError(Exception):
    """Base class for all expected ledger failures."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ConfigurationError(LedgerError):
    """Required identifier (spreadsheet id, credentials, bot token) is missing."""


class ValidationError(LedgerError):
    """Input is well-formed but not acceptable (fee rate out of range, rate <= 0)."""


class PermissionDeniedError(LedgerError):
    """Permission resolver denied the actor."""

    def __init__(self, reason: str):
        super().__init__(f"权限不足: {reason}")
        self.reason = reason


class NotFoundError(LedgerError):
    """No matching Active record for a reversal or modification."""


class TransientIOError(LedgerError):
    """Store or notifier call failed. Never retried by the core."""

