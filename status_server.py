# status_server.py
import logging
import time
from typing import Any

from aiohttp import web

from commands import CommandPolicy
from config import AUDIT_LOG_LIMIT, DEFAULT_LOGS_LIMIT
from prober import ServerProbe
from store import RecordStore

log = logging.getLogger(__name__)


class StatusServer:
    """Read-only JSON view of the bridge for uptime monitors."""

    def __init__(self, session: Any, probe: ServerProbe, store: RecordStore,
                 policy: CommandPolicy, host: str = "0.0.0.0", port: int = 10000,
                 admins: tuple = ()) -> None:
        self.session = session
        self.probe = probe
        self.store = store
        self.policy = policy
        self.host = host
        self.port = port
        self.admins = admins
        self.app = web.Application()
        self.runner: web.AppRunner | None = None
        self._start_time: float = time.time()
        self._setup_routes()

    def _setup_routes(self) -> None:
        self.app.router.add_get("/", self.handle_root)
        self.app.router.add_get("/health", self.handle_health)
        self.app.router.add_get("/commands", self.handle_commands)
        self.app.router.add_get("/logs", self.handle_logs)

    def _bot_connected(self) -> bool:
        return bool(self.session is not None and self.session.is_ready)

    async def handle_root(self, request: web.Request) -> web.Response:
        """Overall status - always 200"""
        return web.json_response(
            {
                "status": "running",
                "botConnected": self._bot_connected(),
                "serverOnline": self.probe.is_online,
                "admins": list(self.admins),
                "uptime_seconds": int(time.time() - self._start_time),
                "stats": self.store.stats,
            }
        )

    async def handle_health(self, request: web.Request) -> web.Response:
        bot_online = self._bot_connected()
        server_online = self.probe.is_online
        healthy = bot_online and server_online
        return web.json_response(
            {
                "status": "healthy" if healthy else "degraded",
                "botOnline": bot_online,
                "serverOnline": server_online,
            },
            status=200 if healthy else 503,
        )

    async def handle_commands(self, request: web.Request) -> web.Response:
        return web.json_response(
            {
                "allowed": self.policy.allowed_commands(),
                "banned": self.policy.banned_commands(),
                "ranks": self.policy.ranks(),
            }
        )

    async def handle_logs(self, request: web.Request) -> web.Response:
        raw = request.query.get("limit")
        limit = DEFAULT_LOGS_LIMIT
        if raw is not None:
            try:
                limit = int(raw)
            except ValueError:
                return web.json_response({"error": "limit must be an integer"}, status=400)
        limit = max(1, min(limit, AUDIT_LOG_LIMIT))
        logs = self.store.recent_logs(limit)
        return web.json_response({"count": len(logs), "logs": logs})

    async def start(self) -> None:
        try:
            self.runner = web.AppRunner(self.app)
            await self.runner.setup()
            site = web.TCPSite(self.runner, self.host, self.port)
            await site.start()
            log.info(f"Status server started on {self.host}:{self.port}")
        except Exception as e:
            log.exception(f"Failed to start status server: {e}")
            raise

    async def stop(self) -> None:
        if self.runner:
            try:
                await self.runner.cleanup()
                log.info("Status server stopped")
            except Exception as e:
                log.exception(f"Error stopping status server: {e}")
