"""Gateway websocket client.

Only what a slash-command bot needs: HELLO, IDENTIFY or RESUME, heartbeats,
and dispatch frames forwarded to a callback. Reconnects forever unless the
gateway closes with a code that retrying cannot fix (bad token, bad intents).
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import platform
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

import websockets
from websockets.exceptions import ConnectionClosed

from ...core.logging_utils import log_event
from .constants import DISCORD_GATEWAY_URL
from .errors import DiscordAPIError, DiscordPermanentError
from .rest import DiscordRestClient

FATAL_GATEWAY_CLOSE_CODES = frozenset({4004, 4010, 4011, 4012, 4013, 4014})
ZOMBIE_CLOSE_CODE = 4000

OP_DISPATCH = 0
OP_HEARTBEAT = 1
OP_IDENTIFY = 2
OP_RESUME = 6
OP_RECONNECT = 7
OP_INVALID_SESSION = 9
OP_HELLO = 10
OP_HEARTBEAT_ACK = 11

DispatchCallback = Callable[[str, dict[str, Any]], Awaitable[None]]


@dataclass(frozen=True)
class GatewayFrame:
    op: int
    d: Any = None
    s: Optional[int] = None
    t: Optional[str] = None


@dataclass
class GatewaySession:
    """What has to survive a reconnect for RESUME to work."""

    session_id: Optional[str] = None
    sequence: Optional[int] = None
    resume_url: Optional[str] = None

    @property
    def resumable(self) -> bool:
        return self.session_id is not None and self.sequence is not None

    def observe(self, frame: GatewayFrame) -> None:
        if frame.s is not None:
            self.sequence = frame.s

    def start(self, ready: dict[str, Any]) -> None:
        session_id = ready.get("session_id")
        resume_url = ready.get("resume_gateway_url")
        self.session_id = session_id if isinstance(session_id, str) else None
        self.resume_url = resume_url if isinstance(resume_url, str) else None

    def forget(self) -> None:
        self.session_id = None
        self.sequence = None
        self.resume_url = None


def build_identify_payload(*, bot_token: str, intents: int) -> dict[str, Any]:
    return {
        "op": OP_IDENTIFY,
        "d": {
            "token": bot_token,
            "intents": intents,
            "properties": {
                "os": platform.system().lower() or "unknown",
                "browser": "slashbot",
                "device": "slashbot",
            },
        },
    }


def build_resume_payload(
    *, bot_token: str, session_id: str, sequence: Optional[int]
) -> dict[str, Any]:
    return {
        "op": OP_RESUME,
        "d": {"token": bot_token, "session_id": session_id, "seq": sequence},
    }


def parse_gateway_frame(frame: str | bytes | dict[str, Any]) -> GatewayFrame:
    if isinstance(frame, (bytes, bytearray)):
        frame = frame.decode("utf-8")
    payload = json.loads(frame) if isinstance(frame, str) else frame
    if not isinstance(payload, dict):
        raise DiscordAPIError("Discord gateway frame must be a JSON object")
    op = payload.get("op")
    if not isinstance(op, int) or isinstance(op, bool):
        raise DiscordAPIError(f"Discord gateway frame has no numeric op: {payload!r}")
    seq = payload.get("s")
    event_type = payload.get("t")
    return GatewayFrame(
        op=op,
        d=payload.get("d"),
        s=seq if isinstance(seq, int) else None,
        t=event_type if isinstance(event_type, str) else None,
    )


def calculate_reconnect_backoff(
    attempt: int,
    *,
    base_seconds: float = 1.0,
    max_seconds: float = 30.0,
    rand_float: Callable[[], float] = random.random,
) -> float:
    """Exponential backoff with +/-20% jitter, capped at ``max_seconds``."""
    if max_seconds <= 0.0 or base_seconds <= 0.0:
        return 0.0
    exponent = min(max(attempt, 0), 16)
    jitter = 0.8 + 0.4 * min(max(rand_float(), 0.0), 1.0)
    return min(max_seconds, base_seconds * (2**exponent) * jitter)


def gateway_close_code(exc: BaseException) -> Optional[int]:
    for candidate in (exc, getattr(exc, "rcvd", None)):
        code = getattr(candidate, "code", None)
        if isinstance(code, int):
            return code
    return None


def _with_gateway_query(url: str) -> str:
    return url if "?" in url else f"{url}?v=10&encoding=json"


class DiscordGatewayClient:
    def __init__(
        self,
        *,
        bot_token: str,
        intents: int,
        logger: logging.Logger,
        gateway_url: Optional[str] = None,
    ) -> None:
        self._bot_token = bot_token
        self._intents = intents
        self._logger = logger
        self._gateway_url = gateway_url
        self._session = GatewaySession()
        self._heartbeat_acked = True
        self._stop_event = asyncio.Event()
        self._heartbeat_task: Optional[asyncio.Task[None]] = None
        self._websocket: Any = None

    @property
    def session_id(self) -> Optional[str]:
        return self._session.session_id

    @property
    def sequence(self) -> Optional[int]:
        return self._session.sequence

    @property
    def can_resume(self) -> bool:
        return self._session.resumable

    async def stop(self) -> None:
        self._stop_event.set()
        await self._cancel_heartbeat()
        if self._websocket is not None:
            with contextlib.suppress(Exception):
                await self._websocket.close()

    async def run(self, on_dispatch: DispatchCallback) -> None:
        failures = 0
        while not self._stop_event.is_set():
            healthy = False
            try:
                url = await self._resolve_gateway_url()
                async with websockets.connect(url) as websocket:
                    self._websocket = websocket
                    healthy = await self._run_connection(websocket, on_dispatch)
            except asyncio.CancelledError:
                raise
            except DiscordPermanentError as exc:
                await self._halt(str(exc))
                break
            except ConnectionClosed as exc:
                code = gateway_close_code(exc)
                if code in FATAL_GATEWAY_CLOSE_CODES:
                    await self._halt(f"gateway_close_code={code}")
                    break
                log_event(
                    self._logger, logging.INFO, "discord.gateway.closed", close_code=code
                )
            except Exception as exc:
                log_event(self._logger, logging.WARNING, "discord.gateway.error", exc=exc)
            finally:
                self._websocket = None
                await self._cancel_heartbeat()

            if self._stop_event.is_set():
                break
            # A connection that got as far as READY/RESUMED resets the backoff.
            failures = 0 if healthy else failures + 1
            delay = calculate_reconnect_backoff(failures)
            log_event(
                self._logger,
                logging.INFO,
                "discord.gateway.reconnect",
                attempt=failures,
                backoff_seconds=round(delay, 2),
                resume=self.can_resume,
            )
            await asyncio.sleep(delay)

    async def _halt(self, reason: str) -> None:
        log_event(self._logger, logging.ERROR, "discord.gateway.halted", reason=reason)
        await self._stop_event.wait()

    async def _resolve_gateway_url(self) -> str:
        if self._session.resumable and self._session.resume_url:
            return _with_gateway_query(self._session.resume_url)
        if self._gateway_url:
            return self._gateway_url
        async with DiscordRestClient(bot_token=self._bot_token) as rest:
            payload = await rest.get_gateway_bot()
        url = payload.get("url")
        if not isinstance(url, str) or not url:
            return DISCORD_GATEWAY_URL
        return _with_gateway_query(url)

    async def _send(self, websocket: Any, payload: dict[str, Any]) -> None:
        await websocket.send(json.dumps(payload))

    async def _run_connection(self, websocket: Any, on_dispatch: DispatchCallback) -> bool:
        """Drive one websocket until it ends; True if the session came up."""
        interval = self._read_hello(await websocket.recv())
        self._heartbeat_acked = True
        self._heartbeat_task = asyncio.create_task(
            self._heartbeat_loop(websocket, interval)
        )
        session = self._session
        if session.resumable:
            assert session.session_id is not None
            await self._send(
                websocket,
                build_resume_payload(
                    bot_token=self._bot_token,
                    session_id=session.session_id,
                    sequence=session.sequence,
                ),
            )
        else:
            await self._send(
                websocket,
                build_identify_payload(bot_token=self._bot_token, intents=self._intents),
            )

        healthy = False
        async for raw_message in websocket:
            frame = parse_gateway_frame(raw_message)
            session.observe(frame)
            if frame.op == OP_DISPATCH:
                if frame.t == "READY" and isinstance(frame.d, dict):
                    session.start(frame.d)
                    healthy = True
                elif frame.t == "RESUMED":
                    healthy = True
                if frame.t and isinstance(frame.d, dict):
                    await on_dispatch(frame.t, frame.d)
            elif frame.op == OP_HEARTBEAT:
                await self._send(websocket, {"op": OP_HEARTBEAT, "d": session.sequence})
            elif frame.op == OP_HEARTBEAT_ACK:
                self._heartbeat_acked = True
            elif frame.op == OP_RECONNECT:
                log_event(self._logger, logging.INFO, "discord.gateway.reconnect_requested")
                break
            elif frame.op == OP_INVALID_SESSION:
                resumable = frame.d is True
                log_event(
                    self._logger,
                    logging.WARNING,
                    "discord.gateway.invalid_session",
                    resumable=resumable,
                )
                if not resumable:
                    session.forget()
                break
        return healthy

    @staticmethod
    def _read_hello(raw: Any) -> float:
        hello = parse_gateway_frame(raw)
        if hello.op != OP_HELLO:
            raise DiscordAPIError("Discord gateway did not open with HELLO")
        data = hello.d if isinstance(hello.d, dict) else {}
        interval_ms = data.get("heartbeat_interval")
        if not isinstance(interval_ms, (int, float)) or interval_ms <= 0:
            raise DiscordAPIError("Discord gateway HELLO has no heartbeat_interval")
        return float(interval_ms) / 1000.0

    async def _heartbeat_loop(self, websocket: Any, interval_seconds: float) -> None:
        # The first beat is jittered so reconnecting shards do not stampede.
        await asyncio.sleep(interval_seconds * random.random())
        while not self._stop_event.is_set():
            if not self._heartbeat_acked:
                log_event(self._logger, logging.WARNING, "discord.gateway.zombie")
                await websocket.close(code=ZOMBIE_CLOSE_CODE)
                return
            self._heartbeat_acked = False
            await self._send(websocket, {"op": OP_HEARTBEAT, "d": self._session.sequence})
            await asyncio.sleep(interval_seconds)

    async def _cancel_heartbeat(self) -> None:
        task, self._heartbeat_task = self._heartbeat_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception as exc:
            # The socket may already be gone; shutdown and reconnect still proceed.
            log_event(
                self._logger, logging.DEBUG, "discord.gateway.heartbeat.ended", exc=exc
            )
