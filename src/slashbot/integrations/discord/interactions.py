from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping, Optional, Union

from .constants import (
    INTERACTION_TYPE_APPLICATION_COMMAND,
    INTERACTION_TYPE_AUTOCOMPLETE,
)
from .registry import OptionKind

# Option types that nest further options instead of carrying a value.
_SUB_COMMAND = 1
_SUB_COMMAND_GROUP = 2

OptionScalar = Union[str, int, bool]


@dataclass(frozen=True)
class UserRef:
    id: str
    username: Optional[str] = None
    global_name: Optional[str] = None
    avatar: Optional[str] = None
    bot: bool = False

    @property
    def display_name(self) -> str:
        return self.global_name or self.username or self.id

    @property
    def mention(self) -> str:
        return f"<@{self.id}>"


@dataclass(frozen=True)
class ChannelRef:
    id: str
    name: Optional[str] = None
    type: Optional[int] = None

    @property
    def mention(self) -> str:
        return f"<#{self.id}>"


@dataclass(frozen=True)
class OptionValue:
    """One caller-supplied argument tagged with its wire kind.

    ``value`` is a str/int/bool for scalar kinds and the referenced object's
    id for user and channel kinds; ``resolved`` carries the enriched
    reference when the platform included it.
    """

    kind: OptionKind
    value: OptionScalar
    resolved: Union[UserRef, ChannelRef, None] = None
    focused: bool = False


@dataclass(frozen=True)
class InteractionEvent:
    """Immutable snapshot of one slash-command (or autocomplete) invocation."""

    interaction_id: str
    token: str
    application_id: Optional[str]
    type: int
    command_name: str
    user: UserRef
    channel_id: Optional[str]
    guild_id: Optional[str] = None
    subcommand: tuple[str, ...] = ()
    arguments: Mapping[str, OptionValue] = field(
        default_factory=lambda: MappingProxyType({})
    )
    locale: Optional[str] = None
    raw: Optional[dict[str, Any]] = field(default=None, repr=False, compare=False)

    def __post_init__(self) -> None:
        if not isinstance(self.arguments, MappingProxyType):
            object.__setattr__(
                self, "arguments", MappingProxyType(dict(self.arguments))
            )

    @property
    def is_autocomplete(self) -> bool:
        return self.type == INTERACTION_TYPE_AUTOCOMPLETE

    @property
    def in_guild(self) -> bool:
        return self.guild_id is not None

    @property
    def focused_option(self) -> Optional[str]:
        for name, option in self.arguments.items():
            if option.focused:
                return name
        return None


def _as_id(value: object) -> str | None:
    if value is None:
        return None
    token = str(value).strip()
    return token or None


def _parse_user(payload: Any) -> Optional[UserRef]:
    if not isinstance(payload, dict):
        return None
    user_id = _as_id(payload.get("id"))
    if user_id is None:
        return None
    return UserRef(
        id=user_id,
        username=payload.get("username") if isinstance(payload.get("username"), str) else None,
        global_name=(
            payload.get("global_name")
            if isinstance(payload.get("global_name"), str)
            else None
        ),
        avatar=payload.get("avatar") if isinstance(payload.get("avatar"), str) else None,
        bot=bool(payload.get("bot", False)),
    )


def _parse_channel(payload: Any) -> Optional[ChannelRef]:
    if not isinstance(payload, dict):
        return None
    channel_id = _as_id(payload.get("id"))
    if channel_id is None:
        return None
    channel_type = payload.get("type")
    return ChannelRef(
        id=channel_id,
        name=payload.get("name") if isinstance(payload.get("name"), str) else None,
        type=channel_type if isinstance(channel_type, int) else None,
    )


def extract_invoking_user(interaction_payload: dict[str, Any]) -> Optional[UserRef]:
    member = interaction_payload.get("member")
    if isinstance(member, dict):
        user = _parse_user(member.get("user"))
        if user is not None:
            return user
    return _parse_user(interaction_payload.get("user"))


def extract_command_path_and_options(
    interaction_payload: dict[str, Any],
) -> tuple[tuple[str, ...], list[dict[str, Any]]]:
    data = interaction_payload.get("data")
    if not isinstance(data, dict):
        return (), []

    root_name = data.get("name")
    if not isinstance(root_name, str) or not root_name:
        return (), []

    path: list[str] = [root_name]
    options = data.get("options")
    current_options = options if isinstance(options, list) else []

    while current_options:
        first = current_options[0]
        if not isinstance(first, dict):
            break
        if first.get("type") not in (_SUB_COMMAND, _SUB_COMMAND_GROUP):
            break
        name = first.get("name")
        if isinstance(name, str) and name:
            path.append(name)
        nested = first.get("options")
        current_options = nested if isinstance(nested, list) else []

    return tuple(path), [item for item in current_options if isinstance(item, dict)]


_EMPTY_FOCUSED_VALUES: dict[OptionKind, OptionScalar] = {
    OptionKind.INTEGER: 0,
    OptionKind.BOOLEAN: False,
}


def _coerce_value(kind: OptionKind, value: Any) -> Optional[OptionScalar]:
    if kind is OptionKind.STRING:
        return value if isinstance(value, str) else None
    if kind is OptionKind.INTEGER:
        if isinstance(value, bool):
            return None
        if isinstance(value, int):
            return value
        # Autocomplete sends whatever the user has typed so far.
        if isinstance(value, str):
            try:
                return int(value)
            except ValueError:
                return None
        return None
    if kind is OptionKind.BOOLEAN:
        return value if isinstance(value, bool) else None
    return _as_id(value)


def parse_options(
    raw_options: list[dict[str, Any]],
    *,
    resolved: Optional[dict[str, Any]] = None,
) -> dict[str, OptionValue]:
    resolved = resolved if isinstance(resolved, dict) else {}
    resolved_users = resolved.get("users") if isinstance(resolved.get("users"), dict) else {}
    resolved_channels = (
        resolved.get("channels") if isinstance(resolved.get("channels"), dict) else {}
    )

    parsed: dict[str, OptionValue] = {}
    for item in raw_options:
        name = item.get("name")
        if not isinstance(name, str) or not name:
            continue
        try:
            kind = OptionKind(item.get("type"))
        except ValueError:
            continue
        focused = bool(item.get("focused", False))
        value = _coerce_value(kind, item.get("value"))
        if value is None:
            if not focused:
                continue
            # A focused autocomplete option may be empty or half-typed.
            value = _EMPTY_FOCUSED_VALUES.get(kind, "")
        reference: Union[UserRef, ChannelRef, None] = None
        if kind is OptionKind.USER:
            reference = _parse_user(resolved_users.get(str(value))) or UserRef(
                id=str(value)
            )
        elif kind is OptionKind.CHANNEL:
            reference = _parse_channel(
                resolved_channels.get(str(value))
            ) or ChannelRef(id=str(value))
        parsed[name] = OptionValue(
            kind=kind, value=value, resolved=reference, focused=focused
        )
    return parsed


def parse_interaction_event(
    interaction_payload: dict[str, Any],
) -> Optional[InteractionEvent]:
    """Build an ``InteractionEvent`` from an INTERACTION_CREATE payload.

    Returns ``None`` for payloads that are not slash commands or autocomplete
    requests, or that lack the fields needed to answer them.
    """
    interaction_type = interaction_payload.get("type")
    if interaction_type not in (
        INTERACTION_TYPE_APPLICATION_COMMAND,
        INTERACTION_TYPE_AUTOCOMPLETE,
    ):
        return None
    interaction_id = extract_interaction_id(interaction_payload)
    token = extract_interaction_token(interaction_payload)
    user = extract_invoking_user(interaction_payload)
    path, raw_options = extract_command_path_and_options(interaction_payload)
    if not interaction_id or not token or user is None or not path:
        return None

    data = interaction_payload.get("data")
    resolved = data.get("resolved") if isinstance(data, dict) else None
    locale = interaction_payload.get("locale")
    return InteractionEvent(
        interaction_id=interaction_id,
        token=token,
        application_id=_as_id(interaction_payload.get("application_id")),
        type=interaction_type,
        command_name=path[0],
        subcommand=path[1:],
        arguments=parse_options(raw_options, resolved=resolved),
        user=user,
        channel_id=extract_channel_id(interaction_payload),
        guild_id=extract_guild_id(interaction_payload),
        locale=locale if isinstance(locale, str) else None,
        raw=interaction_payload,
    )


def extract_interaction_id(interaction_payload: dict[str, Any]) -> Optional[str]:
    return _as_id(interaction_payload.get("id"))


def extract_interaction_token(interaction_payload: dict[str, Any]) -> Optional[str]:
    return _as_id(interaction_payload.get("token"))


def extract_channel_id(interaction_payload: dict[str, Any]) -> Optional[str]:
    channel_id = _as_id(interaction_payload.get("channel_id"))
    if channel_id:
        return channel_id
    channel = interaction_payload.get("channel")
    if isinstance(channel, dict):
        return _as_id(channel.get("id"))
    return None


def extract_guild_id(interaction_payload: dict[str, Any]) -> Optional[str]:
    return _as_id(interaction_payload.get("guild_id"))
