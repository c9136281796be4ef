"""Command catalogue: definitions, parameter schemas and the registry itself.

The registry is built once at startup by each feature module calling
``register()`` and is sealed before the first interaction is dispatched.
After sealing it is read-only, so concurrent dispatches can share it
without locking.
"""

from __future__ import annotations

import enum
import re
from dataclasses import dataclass, field
from typing import (
    TYPE_CHECKING,
    Any,
    Awaitable,
    Callable,
    Dict,
    Iterator,
    List,
    Optional,
    Tuple,
    Union,
)

from .constants import (
    DISCORD_MAX_CHOICES,
    DISCORD_MAX_COMMAND_NAME_LENGTH,
    DISCORD_MAX_DESCRIPTION_LENGTH,
)
from .errors import CommandNotFoundError, DuplicateCommandError, InvalidDefinitionError

if TYPE_CHECKING:
    from .dispatcher import AutocompleteContext, CommandContext

CommandHandler = Callable[["CommandContext"], Awaitable[None]]
AutocompleteHandler = Callable[["AutocompleteContext"], Awaitable[None]]

# Lowercase letters, digits, '-' and '_' (plus non-ASCII word characters,
# which the platform also accepts for localized names).
_NAME_RE = re.compile(r"[-_\w]{1,32}")

DEFAULT_CATEGORY = "General"
MAX_OPTIONS = 25


class OptionKind(enum.IntEnum):
    """Application-command option types understood by the core."""

    STRING = 3
    INTEGER = 4
    BOOLEAN = 5
    USER = 6
    CHANNEL = 7

    @property
    def label(self) -> str:
        return self.name.lower()


ChoiceValue = Union[str, int]


@dataclass(frozen=True)
class Choice:
    name: str
    value: ChoiceValue


@dataclass(frozen=True)
class ParameterSpec:
    name: str
    description: str
    kind: OptionKind = OptionKind.STRING
    required: bool = False
    choices: Tuple[Choice, ...] = ()
    min_value: Optional[int] = None
    max_value: Optional[int] = None
    autocomplete: bool = False

    def clamp(self, value: int) -> int:
        if self.min_value is not None and value < self.min_value:
            return self.min_value
        if self.max_value is not None and value > self.max_value:
            return self.max_value
        return value


@dataclass(frozen=True)
class CommandDefinition:
    name: str
    description: str
    handler: CommandHandler
    category: str = DEFAULT_CATEGORY
    options: Tuple[ParameterSpec, ...] = ()
    autocomplete: Optional[AutocompleteHandler] = None
    # Passed through to the platform, which performs the capability check.
    default_member_permissions: Optional[str] = None
    dm_permission: bool = True
    _options_by_name: Dict[str, ParameterSpec] = field(
        init=False, repr=False, compare=False
    )

    def __post_init__(self) -> None:
        # Accept lists for convenience; store an immutable tuple.
        object.__setattr__(self, "options", tuple(self.options))
        object.__setattr__(
            self, "_options_by_name", {spec.name: spec for spec in self.options}
        )

    def option(self, name: str) -> Optional[ParameterSpec]:
        return self._options_by_name.get(name)


def validate_definition(definition: CommandDefinition) -> None:
    _validate_name(definition.name, what="command")
    _validate_description(definition.description, what=f"command {definition.name!r}")
    if not callable(definition.handler):
        raise InvalidDefinitionError(
            f"command {definition.name!r} handler must be callable"
        )
    if definition.autocomplete is not None and not callable(definition.autocomplete):
        raise InvalidDefinitionError(
            f"command {definition.name!r} autocomplete must be callable"
        )
    if len(definition.options) > MAX_OPTIONS:
        raise InvalidDefinitionError(
            f"command {definition.name!r} declares more than {MAX_OPTIONS} options"
        )
    if definition.default_member_permissions is not None and (
        not str(definition.default_member_permissions).isdigit()
    ):
        raise InvalidDefinitionError(
            f"command {definition.name!r} default_member_permissions must be a "
            "permission bitset string"
        )

    seen: set[str] = set()
    optional_seen = False
    for spec in definition.options:
        where = f"option {spec.name!r} of command {definition.name!r}"
        _validate_name(spec.name, what=where)
        _validate_description(spec.description, what=where)
        if spec.name in seen:
            raise InvalidDefinitionError(f"{where} is declared twice")
        seen.add(spec.name)
        if not isinstance(spec.kind, OptionKind):
            raise InvalidDefinitionError(f"{where} has unsupported kind {spec.kind!r}")
        if spec.required and optional_seen:
            raise InvalidDefinitionError(
                f"{where} is required but follows an optional option"
            )
        optional_seen = optional_seen or not spec.required
        _validate_bounds(spec, where=where)
        _validate_choices(spec, where=where)


def _validate_name(name: Any, *, what: str) -> None:
    if not isinstance(name, str) or not _NAME_RE.fullmatch(name):
        raise InvalidDefinitionError(
            f"{what} name {name!r} must be 1-{DISCORD_MAX_COMMAND_NAME_LENGTH} "
            "characters of letters, digits, '-' or '_'"
        )
    if name != name.lower():
        raise InvalidDefinitionError(f"{what} name {name!r} must be lowercase")


def _validate_description(description: Any, *, what: str) -> None:
    if (
        not isinstance(description, str)
        or not description.strip()
        or len(description) > DISCORD_MAX_DESCRIPTION_LENGTH
    ):
        raise InvalidDefinitionError(
            f"{what} description must be 1-{DISCORD_MAX_DESCRIPTION_LENGTH} characters"
        )


def _validate_bounds(spec: ParameterSpec, *, where: str) -> None:
    bounded = spec.min_value is not None or spec.max_value is not None
    if bounded and spec.kind is not OptionKind.INTEGER:
        raise InvalidDefinitionError(f"{where} declares bounds but is not an integer")
    if (
        spec.min_value is not None
        and spec.max_value is not None
        and spec.min_value > spec.max_value
    ):
        raise InvalidDefinitionError(
            f"{where} has min_value {spec.min_value} > max_value {spec.max_value}"
        )


def _validate_choices(spec: ParameterSpec, *, where: str) -> None:
    if not spec.choices:
        return
    if spec.kind not in (OptionKind.STRING, OptionKind.INTEGER):
        raise InvalidDefinitionError(f"{where} declares choices but is not a string or integer")
    if spec.autocomplete:
        raise InvalidDefinitionError(f"{where} cannot combine choices and autocomplete")
    if len(spec.choices) > DISCORD_MAX_CHOICES:
        raise InvalidDefinitionError(
            f"{where} declares more than {DISCORD_MAX_CHOICES} choices"
        )
    expected_type = str if spec.kind is OptionKind.STRING else int
    for choice in spec.choices:
        if type(choice.value) is not expected_type:
            raise InvalidDefinitionError(
                f"{where} choice {choice.name!r} has value of the wrong type"
            )


class CategoryListing:
    """Restartable view of ``(category, [definitions])`` pairs.

    Grouping happens on each iteration, categories in first-seen order and
    commands in registration order.
    """

    def __init__(self, registry: "CommandRegistry") -> None:
        self._registry = registry

    def __iter__(self) -> Iterator[Tuple[str, List[CommandDefinition]]]:
        grouped: Dict[str, List[CommandDefinition]] = {}
        for definition in self._registry:
            grouped.setdefault(definition.category, []).append(definition)
        for category, definitions in grouped.items():
            yield category, definitions

    def categories(self) -> List[str]:
        return [category for category, _ in self]


class CommandRegistry:
    """Mapping from command name to its definition."""

    def __init__(self) -> None:
        self._commands: Dict[str, CommandDefinition] = {}
        self._sealed = False

    @property
    def sealed(self) -> bool:
        return self._sealed

    def register(self, definition: CommandDefinition) -> CommandDefinition:
        if self._sealed:
            raise InvalidDefinitionError(
                f"cannot register {definition.name!r}: the registry is sealed"
            )
        validate_definition(definition)
        if definition.name in self._commands:
            raise DuplicateCommandError(definition.name)
        self._commands[definition.name] = definition
        return definition

    def command(
        self,
        name: str,
        description: str,
        *,
        category: str = DEFAULT_CATEGORY,
        options: Tuple[ParameterSpec, ...] = (),
        autocomplete: Optional[AutocompleteHandler] = None,
        default_member_permissions: Optional[str] = None,
        dm_permission: bool = True,
    ) -> Callable[[CommandHandler], CommandHandler]:
        """Decorator form of ``register()``."""

        def decorator(handler: CommandHandler) -> CommandHandler:
            self.register(
                CommandDefinition(
                    name=name,
                    description=description,
                    handler=handler,
                    category=category,
                    options=options,
                    autocomplete=autocomplete,
                    default_member_permissions=default_member_permissions,
                    dm_permission=dm_permission,
                )
            )
            return handler

        return decorator

    def seal(self) -> None:
        self._sealed = True

    def lookup(self, name: str) -> CommandDefinition:
        try:
            return self._commands[name]
        except KeyError:
            raise CommandNotFoundError(name) from None

    def get(self, name: str) -> Optional[CommandDefinition]:
        return self._commands.get(name)

    def all_by_category(self) -> CategoryListing:
        return CategoryListing(self)

    def __contains__(self, name: object) -> bool:
        return name in self._commands

    def __iter__(self) -> Iterator[CommandDefinition]:
        return iter(list(self._commands.values()))

    def __len__(self) -> int:
        return len(self._commands)
