"""Game session state machine and console parsing tests (no network)."""
import asyncio

import pytest

from game_session import (GameSession, SessionState, clean_console_line, reconnect_delay,
                          strip_ansi)

from fakes import FakeProbe, FakeWebsocket


def make_session(probe=None, **kwargs):
    kwargs.setdefault("greeting", None)
    return GameSession("https://panel.example", "key", "abc123", probe or FakeProbe(), **kwargs)


def test_reconnect_delay_is_linear_and_capped():
    assert reconnect_delay(1) == 5
    assert reconnect_delay(3) == 15
    assert reconnect_delay(24) == 120
    assert reconnect_delay(100) == 120
    assert reconnect_delay(2, multiplier=1.5, cap=2.0) == 2.0


@pytest.mark.parametrize("raw, expected", [
    ("[12:00:01] [Server thread/INFO]: <Alice> !heal", "<Alice> !heal"),
    ("[12:00:01 INFO]: Alice joined the game", "Alice joined the game"),
    ("\x1b[33m[12:00:01 INFO]: [LP] - vip\x1b[0m\r", "[LP] - vip"),
    ("container@pterodactyl~ Server marked as running...", "container@pterodactyl~ Server marked as running..."),
])
def test_clean_console_line(raw, expected):
    assert clean_console_line(raw) == expected


def test_strip_ansi_handles_non_strings():
    assert strip_ansi(42) == "42"


@pytest.mark.asyncio
async def test_process_line_emits_events():
    session = make_session()
    seen = []

    async def record(name, *args):
        seen.append((name,) + args)

    session.on("player_join", lambda h: record("join", h))
    session.on("player_leave", lambda h: record("leave", h))
    session.on("line", lambda l: record("line", l))

    await session.process_line("[10:00:00 INFO]: Alice joined the game")
    await session.process_line("[10:00:05 INFO]: Alice left the game")
    await session.process_line("   ")

    assert seen == [
        ("join", "Alice"), ("line", "Alice joined the game"),
        ("leave", "Alice"), ("line", "Alice left the game"),
    ]


@pytest.mark.asyncio
async def test_handler_errors_do_not_propagate():
    session = make_session()
    calls = []

    async def broken(line):
        raise RuntimeError("bad handler")

    async def healthy(line):
        calls.append(line)

    session.on("line", broken)
    session.on("line", healthy)
    await session.process_line("<Alice> hi")
    assert calls == ["<Alice> hi"]


@pytest.mark.asyncio
async def test_send_line_routes_console_and_chat():
    session = make_session()
    ws = FakeWebsocket()
    session._websocket = ws
    session.is_authenticated = True

    assert await session.send_line("/effect give Alice minecraft:speed 300 2")
    assert await session.send_line("⚡ Speed boosted, Alice!")

    assert ws.sent == [
        {"event": "send command", "args": ["effect give Alice minecraft:speed 300 2"]},
        {"event": "send command", "args": ["say ⚡ Speed boosted, Alice!"]},
    ]


@pytest.mark.asyncio
async def test_send_line_refused_when_not_ready():
    assert not await make_session().send_line("hello")


@pytest.mark.asyncio
async def test_backoff_until_ceiling_then_failed(monkeypatch):
    session = make_session(multiplier=0, max_attempts=3)
    failures = []
    attempts_seen = []

    async def never_connects():
        attempts_seen.append(session.reconnect_attempts)
        return False

    async def on_failed(n):
        failures.append(n)

    monkeypatch.setattr(session, "_connect_once", never_connects)
    session.on("failed", on_failed)
    await asyncio.wait_for(session._run(), timeout=2)

    assert attempts_seen == [0, 1, 2, 3]
    assert failures == [3]
    assert session.state is SessionState.FAILED


@pytest.mark.asyncio
async def test_successful_connect_resets_counter(monkeypatch):
    session = make_session(multiplier=0, max_attempts=2)
    attempts_seen = []
    outcomes = iter([False, True, False, False])
    ready = []

    async def flaky():
        attempts_seen.append(session.reconnect_attempts)
        if next(outcomes):
            await session._on_authenticated()
            return True
        return False

    async def on_ready():
        ready.append(session.state)

    monkeypatch.setattr(session, "_connect_once", flaky)
    session.on("ready", on_ready)
    await asyncio.wait_for(session._run(), timeout=2)

    assert attempts_seen == [0, 1, 1, 2]
    assert ready == [SessionState.CONNECTED]
    assert session.state is SessionState.FAILED


@pytest.mark.asyncio
async def test_offline_server_defers_connection(monkeypatch):
    probe = FakeProbe(online=False)
    session = make_session(probe, offline_delay=0.01)
    calls = []

    async def connect():
        calls.append(True)
        return False

    monkeypatch.setattr(session, "_connect_once", connect)
    task = asyncio.create_task(session._run())
    await asyncio.sleep(0.05)
    assert calls == []
    assert session.state is SessionState.IDLE
    task.cancel()
    await asyncio.gather(task, return_exceptions=True)


@pytest.mark.asyncio
async def test_greeting_sent_after_authentication():
    session = make_session(greeting="hello there", greeting_delay=0)
    ws = FakeWebsocket()
    session._websocket = ws

    await session._on_authenticated()
    await session._greeting_task

    assert session.is_ready
    assert ws.sent == [{"event": "send command", "args": ["say hello there"]}]


def test_recent_logs_accessors():
    session = make_session()
    for line in ["\x1b[31mone\x1b[0m", "two", "three"]:
        session.log_buffer.append(line)
    assert session.get_clean_recent_logs(2) == ["two", "three"]
    assert session.get_clean_recent_logs(5)[0] == "one"
    assert session.get_recent_logs(0) == []
