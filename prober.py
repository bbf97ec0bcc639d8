# prober.py
import asyncio
import logging

from config import PROBE_INTERVAL, PROBE_TIMEOUT

log = logging.getLogger(__name__)


class ServerProbe:
    """TCP reachability check for the game server's player port."""

    def __init__(self, host: str, port: int, timeout: float = PROBE_TIMEOUT):
        self.host = host
        self.port = port
        self.timeout = timeout
        self.is_online: bool = False

    async def check(self) -> bool:
        try:
            _, writer = await asyncio.wait_for(
                asyncio.open_connection(self.host, self.port), timeout=self.timeout)
        except (OSError, asyncio.TimeoutError) as e:
            log.debug(f"Probe {self.host}:{self.port} failed: {e!r}")
            return False
        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass
        return True

    async def update_status(self) -> bool:
        was_online = self.is_online
        try:
            self.is_online = await self.check()
        except Exception:
            log.exception("Unexpected probe error")
            self.is_online = False

        if not was_online and self.is_online:
            log.info(f"🟢 Server {self.host}:{self.port} is ONLINE")
        elif was_online and not self.is_online:
            log.warning(f"🔴 Server {self.host}:{self.port} is OFFLINE")
        return self.is_online

    async def run(self, interval: float = PROBE_INTERVAL) -> None:
        """Polls forever; cancel the task to stop."""
        while True:
            await self.update_status()
            await asyncio.sleep(interval)
