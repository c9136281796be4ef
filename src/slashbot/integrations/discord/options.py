from __future__ import annotations

from typing import Optional

from .errors import TypeMismatchError
from .interactions import ChannelRef, InteractionEvent, OptionValue, UserRef
from .registry import CommandDefinition, OptionKind


class InteractionOptions:
    """Typed read access to the arguments of one interaction.

    Omitted optional parameters read as the kind's zero value: ``""``, ``0``,
    ``False`` or ``None`` for references. Reading a present argument with an
    accessor of a different kind raises ``TypeMismatchError``.
    """

    def __init__(
        self,
        event: InteractionEvent,
        definition: Optional[CommandDefinition] = None,
    ) -> None:
        self._event = event
        self._definition = definition

    def has(self, name: str) -> bool:
        return name in self._event.arguments

    def names(self) -> tuple[str, ...]:
        return tuple(self._event.arguments)

    def raw(self, name: str) -> Optional[OptionValue]:
        return self._event.arguments.get(name)

    def _get(self, name: str, kind: OptionKind) -> Optional[OptionValue]:
        option = self._event.arguments.get(name)
        if option is None:
            return None
        if option.kind is not kind:
            raise TypeMismatchError(
                name, expected=kind.label, actual=option.kind.label
            )
        return option

    def string(self, name: str) -> str:
        option = self._get(name, OptionKind.STRING)
        return str(option.value) if option is not None else ""

    def integer(self, name: str) -> int:
        option = self._get(name, OptionKind.INTEGER)
        if option is None:
            return 0
        value = int(option.value)
        spec = self._definition.option(name) if self._definition else None
        if spec is not None:
            value = spec.clamp(value)
        return value

    def boolean(self, name: str) -> bool:
        option = self._get(name, OptionKind.BOOLEAN)
        return bool(option.value) if option is not None else False

    def user(self, name: str) -> Optional[UserRef]:
        option = self._get(name, OptionKind.USER)
        if option is None:
            return None
        if isinstance(option.resolved, UserRef):
            return option.resolved
        return UserRef(id=str(option.value))

    def channel(self, name: str) -> Optional[ChannelRef]:
        option = self._get(name, OptionKind.CHANNEL)
        if option is None:
            return None
        if isinstance(option.resolved, ChannelRef):
            return option.resolved
        return ChannelRef(id=str(option.value))
