"""Discord slash-command integration."""

from .commands import build_application_commands, sync_commands
from .config import (
    DEFAULT_STATE_FILE,
    DiscordBotConfig,
    DiscordBotConfigError,
    DiscordCommandRegistration,
)
from .constants import (
    DISCORD_API_BASE_URL,
    DISCORD_GATEWAY_URL,
    DISCORD_MAX_MESSAGE_LENGTH,
)
from .dispatcher import (
    AutocompleteContext,
    CommandContext,
    DispatchOutcome,
    InteractionDispatcher,
    SessionContext,
)
from .errors import (
    AlreadyAcknowledgedError,
    CommandNotFoundError,
    DiscordAPIError,
    DiscordError,
    DuplicateCommandError,
    InteractionStateError,
    InvalidDefinitionError,
    NotYetAcknowledgedError,
    TransportError,
    TypeMismatchError,
)
from .gateway import DiscordGatewayClient, GatewayFrame
from .interactions import InteractionEvent, parse_interaction_event
from .options import InteractionOptions
from .registry import (
    Choice,
    CommandDefinition,
    CommandRegistry,
    OptionKind,
    ParameterSpec,
)
from .responder import InteractionResponder, ResponderState
from .rest import DiscordRestClient

__all__ = [
    "AlreadyAcknowledgedError",
    "AutocompleteContext",
    "Choice",
    "CommandContext",
    "CommandDefinition",
    "CommandNotFoundError",
    "CommandRegistry",
    "DEFAULT_STATE_FILE",
    "DISCORD_API_BASE_URL",
    "DISCORD_GATEWAY_URL",
    "DISCORD_MAX_MESSAGE_LENGTH",
    "DiscordAPIError",
    "DiscordBotConfig",
    "DiscordBotConfigError",
    "DiscordCommandRegistration",
    "DiscordError",
    "DiscordGatewayClient",
    "DiscordRestClient",
    "DispatchOutcome",
    "DuplicateCommandError",
    "GatewayFrame",
    "InteractionDispatcher",
    "InteractionEvent",
    "InteractionOptions",
    "InteractionResponder",
    "InteractionStateError",
    "InvalidDefinitionError",
    "NotYetAcknowledgedError",
    "OptionKind",
    "ParameterSpec",
    "ResponderState",
    "SessionContext",
    "TransportError",
    "TypeMismatchError",
    "build_application_commands",
    "parse_interaction_event",
    "sync_commands",
]
