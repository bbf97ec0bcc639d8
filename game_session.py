# game_session.py
import asyncio
import enum
import json
import logging
import re
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional

import aiohttp
import websockets

from config import (OFFLINE_RETRY_DELAY, RECONNECT_MULTIPLIER, RECONNECT_MAX_DELAY,
                    MAX_RECONNECT_ATTEMPTS, GREETING_DELAY, GREETING_LINE,
                    WS_PING_INTERVAL, WS_PING_TIMEOUT, WS_AUTH_TIMEOUT, LOG_BUFFER_SIZE)
from prober import ServerProbe

log = logging.getLogger(__name__)

ansi_escape_pattern = re.compile(r'\x1B(?:[@-Z\\-_]|\[[0-?]*[ -/]*[@-~])')
# "[12:34:56] [Server thread/INFO]: " (vanilla) or "[12:34:56 INFO]: " (Paper)
log_prefix_pattern = re.compile(r'^\[\d{1,2}:\d{2}:\d{2}[^\]]*\](?:\s*\[[^\]]*\])?:\s*')
join_pattern = re.compile(r'^(\w{2,16}) joined the game$')
leave_pattern = re.compile(r'^(\w{2,16}) left the game$')

Handler = Callable[..., Awaitable[None]]


def strip_ansi(text: object) -> str:
    if not isinstance(text, str):
        try:
            text = str(text)
        except Exception:
            return ""
    return ansi_escape_pattern.sub('', text)


def clean_console_line(text: object) -> str:
    """Strips colour codes and the server's timestamp/thread prefix."""
    return log_prefix_pattern.sub('', strip_ansi(text).strip())


def reconnect_delay(attempt: int, multiplier: float = RECONNECT_MULTIPLIER,
                    cap: float = RECONNECT_MAX_DELAY) -> float:
    return min(multiplier * max(attempt, 1), cap)


class SessionState(enum.Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    BACKOFF = "backoff"
    FAILED = "failed"


class GameSession:
    """
    Single console connection to the game server through the Pterodactyl
    websocket.

    Connection attempts wait for the probe to report the server online. A
    dropped session is retried with a growing delay until the attempt ceiling
    is hit, after which the session stays FAILED until restart().

    Events: ``ready()``, ``player_join(handle)``, ``player_leave(handle)``,
    ``line(cleaned_line)``, ``disconnect()``, ``failed(attempts)``.
    """

    def __init__(self, panel_url: str, api_key: str, server_id: str, probe: ServerProbe,
                 offline_delay: float = OFFLINE_RETRY_DELAY,
                 multiplier: float = RECONNECT_MULTIPLIER,
                 max_delay: float = RECONNECT_MAX_DELAY,
                 max_attempts: int = MAX_RECONNECT_ATTEMPTS,
                 greeting: Optional[str] = GREETING_LINE,
                 greeting_delay: float = GREETING_DELAY):
        self._api_key = api_key
        self._server_id = server_id
        self._panel_url = panel_url
        self._websocket_url = f"{self._panel_url}/api/client/servers/{self._server_id}/websocket"
        self._probe = probe
        self._offline_delay = offline_delay
        self._multiplier = multiplier
        self._max_delay = max_delay
        self._max_attempts = max_attempts
        self._greeting = greeting
        self._greeting_delay = greeting_delay
        self._session: Optional[aiohttp.ClientSession] = None
        self._websocket: Optional[Any] = None
        self._listener_task: Optional[asyncio.Task] = None
        self._greeting_task: Optional[asyncio.Task] = None
        self._is_connected: bool = False
        self._handlers: Dict[str, List[Handler]] = {}
        self.log_buffer: Deque[str] = deque(maxlen=LOG_BUFFER_SIZE)
        self.is_authenticated: bool = False
        self.reconnect_attempts: int = 0
        self.state: SessionState = SessionState.IDLE

    # --- Events ---
    def on(self, event: str, handler: Handler) -> None:
        self._handlers.setdefault(event, []).append(handler)

    async def _emit(self, event: str, *args) -> None:
        for handler in self._handlers.get(event, []):
            try:
                await handler(*args)
            except Exception:
                log.exception(f"Error in '{event}' handler {getattr(handler, '__qualname__', handler)}")

    # --- Core Logic Methods ---
    async def _get_websocket_details(self) -> Optional[dict]:
        if not self._session or self._session.closed:
            log.error("aiohttp inactive.")
            return None

        h = {'Authorization': f'Bearer {self._api_key}', 'Accept': 'application/json'}
        log.debug(f"Req WS details:{self._websocket_url}")

        try:
            async with self._session.get(self._websocket_url, headers=h,
                                         timeout=aiohttp.ClientTimeout(total=10)) as r:
                if r.status == 200:
                    d = await r.json()
                    log.info("Got WS details.")
                    return d.get('data')
                else:
                    log.error(f"Fail WS details:{r.status}-{await r.text()}")
                    return None
        except asyncio.TimeoutError:
            log.error("Timeout fetching WS details.")
            return None
        except aiohttp.ClientError as e:
            log.error(f"HTTP error fetching WS details: {e}")
            return None

    async def _run(self):
        while True:
            if not self._probe.is_online:
                self.state = SessionState.IDLE
                log.warning(f"Server offline, retry in {self._offline_delay:.0f}s")
                await asyncio.sleep(self._offline_delay)
                continue

            self.state = SessionState.CONNECTING
            await self._connect_once()

            if self.reconnect_attempts >= self._max_attempts:
                self.state = SessionState.FAILED
                log.error(f"Gave up after {self.reconnect_attempts} reconnect attempts.")
                await self._emit("failed", self.reconnect_attempts)
                return

            self.reconnect_attempts += 1
            delay = reconnect_delay(self.reconnect_attempts, self._multiplier, self._max_delay)
            self.state = SessionState.BACKOFF
            log.warning(f"Reconnect attempt {self.reconnect_attempts}/{self._max_attempts} "
                        f"in {delay:.1f}s")
            await asyncio.sleep(delay)

    async def _connect_once(self) -> bool:
        """One connect/listen cycle. Returns True if the session got authenticated."""
        d = await self._get_websocket_details()
        if not d:
            log.warning("No WS details.")
            return False

        url, tok = d.get('socket'), d.get('token')
        if not url or not tok:
            log.error(f"WS details incomplete: {sorted(d)}")
            return False
        log.info(f"Connecting WS:{url}")
        authenticated = False
        try:
            async with websockets.connect(url, origin=self._panel_url,
                                          ping_interval=WS_PING_INTERVAL,
                                          ping_timeout=WS_PING_TIMEOUT) as ws:
                self._websocket = ws
                self._is_connected = True
                log.info("WS connected.")

                if not await self._authenticate(ws, tok):
                    log.warning("Auth failed.")
                    return False

                authenticated = True
                await self._on_authenticated()
                await self._message_loop(ws)
        except websockets.exceptions.WebSocketException as e:
            log.error(f"WS connection failed:{e}")
        except OSError as e:
            log.error(f"WS connection error:{e}")
        except Exception as e:
            log.exception(f"Unexpected WS connect error:{e}")
        finally:
            self._is_connected = False
            self.is_authenticated = False
            self._websocket = None
            if self._greeting_task and not self._greeting_task.done():
                self._greeting_task.cancel()

        log.warning("❌ Game session ended.")
        if authenticated:
            await self._emit("disconnect")
        return authenticated

    async def _on_authenticated(self):
        self.is_authenticated = True
        self.reconnect_attempts = 0
        self.state = SessionState.CONNECTED
        log.info("🎮 WS authenticated. Listening...")
        if self._greeting:
            self._greeting_task = asyncio.create_task(self._greet())
        await self._emit("ready")

    async def _greet(self):
        await asyncio.sleep(self._greeting_delay)
        await self.send_line(self._greeting)

    async def _authenticate(self, ws, token) -> bool:
        try:
            await ws.send(json.dumps({"event": "auth", "args": [token]}))
            log.info("Sent auth token.")
        except websockets.exceptions.WebSocketException as e:
            log.error(f"WS send err auth:{e}")
            return False

        try:
            raw = await asyncio.wait_for(ws.recv(), timeout=WS_AUTH_TIMEOUT)
            data = json.loads(raw)
        except asyncio.TimeoutError:
            log.error("WS auth timed out.")
            return False
        except websockets.exceptions.ConnectionClosed:
            log.warning("WS closed during auth.")
            return False
        except json.JSONDecodeError as e:
            log.error(f"WS auth decode err:{e}")
            return False

        if data.get("event") == "auth success":
            log.info("WS auth ok.")
            return True
        else:
            log.error(f"WS auth fail:{data.get('args', ['err'])[0]}")
            return False

    async def _message_loop(self, ws):
        """Handles received WebSocket messages."""
        while True:
            try:
                msg = await ws.recv()
                data = json.loads(msg)
                ev = data.get("event")
            except websockets.exceptions.ConnectionClosedOK:
                log.info("WS closed normally.")
                break
            except websockets.exceptions.ConnectionClosedError as e:
                log.warning(f"WS closed err:{e}")
                break
            except json.JSONDecodeError as e:
                log.error(f"JSON decode err: {e}. Raw: {msg[:100]}...")
                continue  # Skip this message

            # Process based on event type
            if ev == "console output":
                args = data.get("args", [])
                line = args[0] if args else None
                if line is not None:
                    self.log_buffer.append(line)
                    log.debug(f"Log raw:{str(line)}...")
                    await self.process_line(line)
            elif ev == "status":
                log.debug(f"Status:{data.get('args', ['N/A'])[0]}")
            elif ev == "token expiring" or ev == "token expired":
                log.warning(f"'{ev}' received. Reconnecting.")
                break

    async def process_line(self, raw_line: str) -> None:
        """Turns one console line into session events."""
        line = clean_console_line(raw_line)
        if not line:
            return
        joined = join_pattern.match(line)
        if joined:
            log.info(f"👤 {joined.group(1)} joined")
            await self._emit("player_join", joined.group(1))
        left = leave_pattern.match(line)
        if left:
            log.info(f"👋 {left.group(1)} left")
            await self._emit("player_leave", left.group(1))
        await self._emit("line", line)

    # --- Public Methods ---
    async def start(self):
        if self._listener_task and not self._listener_task.done():
            log.warning("Game session task running.")
            return

        if not self._session or self._session.closed:
            self._session = aiohttp.ClientSession()
            log.info("Created session.")

        log.info("Starting game session task...")
        self._listener_task = asyncio.create_task(self._run())
        self._listener_task.add_done_callback(self._log_task_exception)

    async def _cancel_listener(self):
        if self._listener_task and not self._listener_task.done():
            log.info("Cancelling game session task.")
            self._listener_task.cancel()
            await asyncio.gather(self._listener_task, return_exceptions=True)

    async def restart(self):
        """Operator-triggered restart; clears the attempt counter."""
        await self._cancel_listener()
        self.reconnect_attempts = 0
        self.state = SessionState.IDLE
        await self.start()

    async def stop(self):
        log.info("Stopping game session...")
        await self._cancel_listener()

        if self._websocket:
            log.info("Closing WS...")
            try:
                await self._websocket.close()
            except websockets.exceptions.WebSocketException:
                pass
            self._websocket = None

        if self._session and not self._session.closed:
            log.info("Closing session.")
            await self._session.close()

        self.state = SessionState.IDLE
        log.info("Game session stopped.")

    async def send_command(self, cmd: str) -> bool:
        if not self.is_authenticated or not self._websocket:
            log.error(f"Cannot send '{cmd}': WS not ready.")
            return False

        pl = {"event": "send command", "args": [cmd]}
        log.info(f"Sending cmd: {cmd}")

        try:
            await self._websocket.send(json.dumps(pl))
            return True
        except websockets.exceptions.ConnectionClosed:
            log.error(f"Fail send '{cmd}': Conn closed.")
            self._is_connected = False
            self.is_authenticated = False
            self._websocket = None
            return False

    async def send_line(self, line: str) -> bool:
        """``/command`` runs on the console; anything else is said in chat."""
        if line.startswith("/"):
            return await self.send_command(line[1:])
        return await self.send_command(f"say {line}")

    # --- Log Accessor Methods ---
    def get_recent_logs(self, num: int = 1) -> list[str]:
        if num < 1:
            return []
        buf_list = list(self.log_buffer)
        str_logs = [str(l) for l in buf_list if isinstance(l, (str, bytes, bytearray))]
        return str_logs[-num:]

    def get_clean_recent_logs(self, num: int = 1) -> list[str]:
        raw = self.get_recent_logs(num)
        return [strip_ansi(l) for l in raw]

    @property
    def is_connected(self) -> bool:
        return self._is_connected

    @property
    def is_ready(self) -> bool:
        return self.is_authenticated and self.state == SessionState.CONNECTED

    def _log_task_exception(self, task: asyncio.Task) -> None:
        try:
            task.result()
        except asyncio.CancelledError:
            pass
        except Exception:
            log.exception("Exception from game session task:")
