from __future__ import annotations


class SlashbotError(Exception):
    """Base error for the bot."""

    recoverable: bool = True
    severity: str = "error"


class TransientError(SlashbotError):
    """Failure that may succeed if the caller tries again later."""

    recoverable = True
    severity = "warning"


class PermanentError(SlashbotError):
    """Failure that will not go away on its own."""

    recoverable = False
    severity = "error"
