from __future__ import annotations

import asyncio
import logging

import pytest

from slashbot.integrations.discord.errors import (
    AlreadyAcknowledgedError,
    NotYetAcknowledgedError,
    TransportError,
)
from slashbot.integrations.discord.registry import Choice
from slashbot.integrations.discord.responder import (
    InteractionResponder,
    ResponderState,
)


def _responder(rest, **kwargs) -> InteractionResponder:
    return InteractionResponder(
        rest,
        application_id="app-1",
        interaction_id="inter-1",
        interaction_token="token-1",
        **kwargs,
    )


@pytest.mark.anyio
async def test_respond_sends_channel_message_callback(fake_rest) -> None:
    responder = _responder(fake_rest)

    await responder.respond("Pong!")

    assert responder.state is ResponderState.RESPONDED
    assert responder.ephemeral is False
    operation, call = fake_rest.calls[0]
    assert operation == "callback"
    assert call["interaction_id"] == "inter-1"
    assert call["interaction_token"] == "token-1"
    assert call["payload"]["type"] == 4
    assert call["payload"]["data"]["content"] == "Pong!"
    assert "flags" not in call["payload"]["data"]


@pytest.mark.anyio
async def test_respond_ephemeral_sets_flag(fake_rest) -> None:
    responder = _responder(fake_rest)

    await responder.respond_ephemeral("only you")

    assert responder.ephemeral is True
    assert fake_rest.payloads("callback")[0]["data"]["flags"] == 64


@pytest.mark.anyio
async def test_second_respond_is_rejected_without_wire_call(fake_rest) -> None:
    responder = _responder(fake_rest)
    await responder.respond("first")

    with pytest.raises(AlreadyAcknowledgedError) as excinfo:
        await responder.respond("second")
    with pytest.raises(AlreadyAcknowledgedError):
        await responder.defer()

    assert excinfo.value.state == "responded"
    assert excinfo.value.operation == "respond"
    assert fake_rest.operations() == ["callback"]


@pytest.mark.anyio
async def test_acknowledging_after_defer_is_rejected_without_wire_call(
    fake_rest,
) -> None:
    responder = _responder(fake_rest)
    await responder.defer(ephemeral=True)

    with pytest.raises(AlreadyAcknowledgedError) as excinfo:
        await responder.respond("too late")
    with pytest.raises(AlreadyAcknowledgedError):
        await responder.respond_ephemeral("still too late")
    with pytest.raises(AlreadyAcknowledgedError):
        await responder.defer()

    assert excinfo.value.state == "deferred"
    assert responder.state is ResponderState.DEFERRED
    assert responder.ephemeral is True
    assert fake_rest.operations() == ["callback"]


@pytest.mark.anyio
async def test_defer_then_edit_then_follow_ups(fake_rest) -> None:
    responder = _responder(fake_rest)

    await responder.defer(ephemeral=True)
    await responder.edit_response("done")
    await responder.edit_response("done, really")
    await responder.follow_up("one more")

    assert responder.state is ResponderState.DEFERRED
    assert fake_rest.operations() == ["callback", "edit", "edit", "followup"]
    assert fake_rest.payloads("callback")[0] == {"type": 5, "data": {"flags": 64}}
    edit_payload = fake_rest.payloads("edit")[0]
    assert edit_payload["content"] == "done"
    assert "flags" not in edit_payload
    assert responder.edit_count == 2
    assert responder.followup_count == 1


@pytest.mark.anyio
async def test_edit_before_acknowledgment_is_rejected(fake_rest) -> None:
    responder = _responder(fake_rest)

    with pytest.raises(NotYetAcknowledgedError):
        await responder.edit_response("too early")
    with pytest.raises(NotYetAcknowledgedError):
        await responder.follow_up("too early")

    assert fake_rest.calls == []
    assert responder.state is ResponderState.UNACKNOWLEDGED


@pytest.mark.anyio
async def test_edit_after_direct_respond_is_rejected(fake_rest) -> None:
    responder = _responder(fake_rest)
    await responder.respond("final")

    with pytest.raises(AlreadyAcknowledgedError):
        await responder.edit_response("changed my mind")

    assert fake_rest.operations() == ["callback"]


@pytest.mark.anyio
async def test_follow_ups_after_respond_are_allowed(fake_rest) -> None:
    responder = _responder(fake_rest)
    await responder.respond("first")

    await responder.follow_up("second")
    await responder.follow_up("third", ephemeral=True)

    assert fake_rest.operations() == ["callback", "followup", "followup"]
    assert fake_rest.payloads("followup")[1]["flags"] == 64
    assert responder.followup_count == 2


@pytest.mark.anyio
async def test_transport_failure_leaves_state_unchanged(fake_rest, caplog) -> None:
    responder = _responder(fake_rest)
    fake_rest.fail_operations.add("callback")

    with caplog.at_level(logging.WARNING):
        with pytest.raises(TransportError):
            await responder.respond("lost")

    assert responder.state is ResponderState.UNACKNOWLEDGED
    assert responder.ephemeral is None
    assert "discord.responder.transport_failed" in caplog.text

    fake_rest.fail_operations.clear()
    await responder.respond("retried")
    assert responder.state is ResponderState.RESPONDED


@pytest.mark.anyio
async def test_failed_follow_up_is_not_counted(fake_rest) -> None:
    responder = _responder(fake_rest)
    await responder.defer()
    fake_rest.fail_operations.add("followup")

    with pytest.raises(TransportError):
        await responder.follow_up("lost")

    assert responder.followup_count == 0
    assert responder.state is ResponderState.DEFERRED


@pytest.mark.anyio
async def test_autocomplete_caps_choices_and_names(fake_rest) -> None:
    responder = _responder(fake_rest)
    choices = [Choice("x" * 150, f"value-{index}") for index in range(30)]

    await responder.respond_autocomplete(choices)

    payload = fake_rest.payloads("callback")[0]
    assert payload["type"] == 8
    assert len(payload["data"]["choices"]) == 25
    assert len(payload["data"]["choices"][0]["name"]) == 100
    assert responder.state is ResponderState.RESPONDED


@pytest.mark.anyio
async def test_concurrent_responds_acknowledge_exactly_once(fake_rest) -> None:
    responder = _responder(fake_rest)

    results = await asyncio.gather(
        responder.respond("a"),
        responder.respond("b"),
        responder.defer(),
        return_exceptions=True,
    )

    assert sum(1 for result in results if result is None) == 1
    assert sum(isinstance(result, AlreadyAcknowledgedError) for result in results) == 2
    assert fake_rest.operations() == ["callback"]


@pytest.mark.anyio
async def test_send_picks_operation_from_state(fake_rest) -> None:
    deferred = _responder(fake_rest)
    await deferred.defer()
    await deferred.send("placeholder replaced")
    await deferred.send("extra")

    assert fake_rest.operations() == ["callback", "edit", "followup"]

    fresh_rest = type(fake_rest)()
    fresh = _responder(fresh_rest)
    await fresh.send("direct", ephemeral=True)
    assert fresh_rest.operations() == ["callback"]
    assert fresh.ephemeral is True


@pytest.mark.anyio
async def test_long_content_is_truncated(fake_rest) -> None:
    responder = _responder(fake_rest, max_message_length=50)

    await responder.respond("x" * 500)

    content = fake_rest.payloads("callback")[0]["data"]["content"]
    assert len(content) == 50
    assert content.endswith("...")


@pytest.mark.anyio
async def test_stats_snapshot(fake_rest) -> None:
    responder = _responder(fake_rest)
    await responder.defer()
    await responder.follow_up("a")
    await responder.follow_up("b")

    stats = responder.stats()
    assert stats.state is ResponderState.DEFERRED
    assert stats.defer_count == 1
    assert stats.respond_count == 0
    assert stats.followup_count == 2
    assert stats.ephemeral is False
