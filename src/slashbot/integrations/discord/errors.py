from __future__ import annotations

from typing import Optional

from ...core.exceptions import PermanentError, TransientError


class DiscordError(Exception):
    """Base Discord integration error."""

    def __init__(self, message: str, *, user_message: Optional[str] = None) -> None:
        super().__init__(message)
        self.user_message = user_message


class DiscordConfigError(DiscordError):
    """Configuration error detected at startup; the bot must not start."""


class DuplicateCommandError(DiscordConfigError):
    """A command with the same name is already registered."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Command {name!r} is already registered")
        self.name = name


class InvalidDefinitionError(DiscordConfigError):
    """A command definition violates the platform's constraints."""


class CommandNotFoundError(DiscordError, LookupError):
    """No command is registered under the requested name."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Command {name!r} is not registered")
        self.name = name


class TypeMismatchError(DiscordError, TypeError):
    """An option was read with an accessor of the wrong kind.

    This is a registry/handler mismatch, not a user error.
    """

    def __init__(self, name: str, *, expected: str, actual: str) -> None:
        super().__init__(
            f"Option {name!r} is {actual}, but was read as {expected}",
            user_message="Something went wrong while running this command.",
        )
        self.name = name
        self.expected = expected
        self.actual = actual


class InteractionStateError(DiscordError):
    """Responder operation is not valid in the current acknowledgment state."""

    def __init__(self, message: str, *, state: str, operation: str) -> None:
        super().__init__(message)
        self.state = state
        self.operation = operation


class AlreadyAcknowledgedError(InteractionStateError):
    """respond/defer called after the interaction was already acknowledged."""


class NotYetAcknowledgedError(InteractionStateError):
    """edit/follow-up called before the interaction was acknowledged."""


class TransportError(DiscordError):
    """A remote call to the platform failed; local state is unchanged."""

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        retry_after: Optional[float] = None,
        user_message: Optional[str] = None,
    ) -> None:
        super().__init__(message, user_message=user_message)
        self.status_code = status_code
        self.retry_after = retry_after


class DiscordAPIError(TransportError):
    """Discord API request error."""


class DiscordTransientError(DiscordAPIError, TransientError):
    """Retryable Discord API error (rate limits, server errors, network issues)."""


class DiscordPermanentError(DiscordAPIError, PermanentError):
    """Non-retryable Discord API error (auth failures, invalid requests)."""

    recoverable = PermanentError.recoverable
    severity = PermanentError.severity
