from __future__ import annotations

import json
import logging
from typing import Any

import pytest

from slashbot.integrations.discord.errors import DiscordAPIError
from slashbot.integrations.discord.gateway import (
    OP_IDENTIFY,
    OP_RESUME,
    DiscordGatewayClient,
    GatewaySession,
    _with_gateway_query,
    build_identify_payload,
    build_resume_payload,
    calculate_reconnect_backoff,
    gateway_close_code,
    parse_gateway_frame,
)


class _FakeWebSocket:
    def __init__(self, frames: list[dict[str, Any]]) -> None:
        self._hello = json.dumps({"op": 10, "d": {"heartbeat_interval": 45000}})
        self._frames = [json.dumps(frame) for frame in frames]
        self.sent: list[dict[str, Any]] = []

    async def recv(self) -> str:
        return self._hello

    async def send(self, message: str) -> None:
        self.sent.append(json.loads(message))

    def __aiter__(self) -> "_FakeWebSocket":
        return self

    async def __anext__(self) -> str:
        if not self._frames:
            raise StopAsyncIteration
        return self._frames.pop(0)


def _client() -> DiscordGatewayClient:
    return DiscordGatewayClient(
        bot_token="tok",
        intents=513,
        logger=logging.getLogger("test.gateway"),
        gateway_url="wss://gateway.test/?v=10&encoding=json",
    )


def test_parse_gateway_frame_accepts_text_bytes_and_dicts() -> None:
    text = parse_gateway_frame('{"op": 0, "s": 3, "t": "READY", "d": {"a": 1}}')
    raw = parse_gateway_frame(b'{"op": 11}')
    mapping = parse_gateway_frame({"op": 1, "d": 7})

    assert (text.op, text.s, text.t, text.d) == (0, 3, "READY", {"a": 1})
    assert raw.op == 11 and raw.s is None and raw.t is None
    assert mapping.d == 7


@pytest.mark.parametrize("frame", ['{"d": 1}', '{"op": "1"}', "[1, 2]"])
def test_parse_gateway_frame_rejects_malformed(frame: str) -> None:
    with pytest.raises(DiscordAPIError):
        parse_gateway_frame(frame)


def test_identify_and_resume_payloads() -> None:
    identify = build_identify_payload(bot_token="tok", intents=513)
    resume = build_resume_payload(bot_token="tok", session_id="sess", sequence=42)

    assert identify["op"] == OP_IDENTIFY
    assert identify["d"]["token"] == "tok"
    assert identify["d"]["intents"] == 513
    assert identify["d"]["properties"]["browser"] == "slashbot"
    assert resume == {
        "op": OP_RESUME,
        "d": {"token": "tok", "session_id": "sess", "seq": 42},
    }


def test_reconnect_backoff_grows_and_caps() -> None:
    def fixed() -> float:
        return 0.5

    delays = [
        calculate_reconnect_backoff(attempt, rand_float=fixed) for attempt in range(8)
    ]

    assert delays[0] == pytest.approx(1.0)
    assert delays[1] == pytest.approx(2.0)
    assert delays[2] == pytest.approx(4.0)
    assert delays == sorted(delays)
    assert delays[-1] == 30.0
    assert calculate_reconnect_backoff(3, max_seconds=0) == 0.0


def test_gateway_close_code_reads_code_or_received_frame() -> None:
    class _Direct(Exception):
        code = 4004

    class _Frame:
        code = 4000

    class _Received(Exception):
        rcvd = _Frame()

    assert gateway_close_code(_Direct()) == 4004
    assert gateway_close_code(_Received()) == 4000
    assert gateway_close_code(RuntimeError()) is None


def test_gateway_query_is_added_once() -> None:
    assert _with_gateway_query("wss://g.test") == "wss://g.test?v=10&encoding=json"
    assert _with_gateway_query("wss://g.test/?v=10") == "wss://g.test/?v=10"


@pytest.mark.anyio
async def test_connection_identifies_then_records_session_for_resume() -> None:
    client = _client()
    dispatched: list[tuple[str, dict[str, Any]]] = []

    async def on_dispatch(event_type: str, payload: dict[str, Any]) -> None:
        dispatched.append((event_type, payload))

    websocket = _FakeWebSocket(
        [
            {
                "op": 0,
                "s": 1,
                "t": "READY",
                "d": {"session_id": "sess-1", "resume_gateway_url": "wss://resume.test"},
            },
            {"op": 0, "s": 2, "t": "INTERACTION_CREATE", "d": {"id": "i-1"}},
            {"op": 1, "d": None},
            {"op": 7, "d": None},
        ]
    )
    try:
        established = await client._run_connection(websocket, on_dispatch)
    finally:
        await client._cancel_heartbeat()

    assert established
    assert websocket.sent[0]["op"] == OP_IDENTIFY
    assert {"op": 1, "d": 2} in websocket.sent
    assert [event for event, _ in dispatched] == ["READY", "INTERACTION_CREATE"]
    assert client.session_id == "sess-1"
    assert client.sequence == 2
    assert client.can_resume
    assert await client._resolve_gateway_url() == "wss://resume.test?v=10&encoding=json"


@pytest.mark.anyio
async def test_reconnect_resumes_previous_session() -> None:
    client = _client()
    client._session = GatewaySession(session_id="sess-1", sequence=9)

    async def on_dispatch(event_type: str, payload: dict[str, Any]) -> None:
        return None

    websocket = _FakeWebSocket([{"op": 0, "s": 10, "t": "RESUMED", "d": {}}])
    try:
        established = await client._run_connection(websocket, on_dispatch)
    finally:
        await client._cancel_heartbeat()

    assert established
    assert websocket.sent[0] == {
        "op": OP_RESUME,
        "d": {"token": "tok", "session_id": "sess-1", "seq": 9},
    }


@pytest.mark.anyio
async def test_non_resumable_invalid_session_forgets_session() -> None:
    client = _client()
    client._session = GatewaySession(
        session_id="sess-1", sequence=9, resume_url="wss://resume.test"
    )

    async def on_dispatch(event_type: str, payload: dict[str, Any]) -> None:
        return None

    websocket = _FakeWebSocket([{"op": 9, "d": False}])
    try:
        await client._run_connection(websocket, on_dispatch)
    finally:
        await client._cancel_heartbeat()

    assert not client.can_resume
    assert client.session_id is None
    assert await client._resolve_gateway_url() == "wss://gateway.test/?v=10&encoding=json"


@pytest.mark.anyio
async def test_missing_hello_is_rejected() -> None:
    client = _client()

    class _NoHello(_FakeWebSocket):
        async def recv(self) -> str:
            return json.dumps({"op": 11})

    with pytest.raises(DiscordAPIError):
        await client._run_connection(_NoHello([]), lambda *_: None)  # type: ignore[arg-type]


@pytest.mark.anyio
async def test_unacknowledged_heartbeat_closes_zombie_connection() -> None:
    client = _client()
    closed: list[int] = []

    class _Closable(_FakeWebSocket):
        async def close(self, code: int = 1000) -> None:
            closed.append(code)

    websocket = _Closable([])
    client._heartbeat_acked = True

    await client._heartbeat_loop(websocket, 0.0)

    assert websocket.sent == [{"op": 1, "d": None}]
    assert closed == [4000]
