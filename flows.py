# flows.py
import asyncio
import logging
import re
import uuid
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional

from config import CAPTURE_WINDOW
from store import RecordStore

log = logging.getLogger(__name__)

# LuckPerms lists groups as "- name" lines, sometimes behind an "[LP]" tag.
# This is a scrape of plugin output and will miss or misread some formats.
rank_line_pattern = re.compile(r"^(?:\[LP\]\s*)?[-–]\s+([A-Za-z0-9_]+)\b")
RANK_STOPLIST = frozenset({
    "lp", "luckperms", "groups", "info", "usage", "default",
    "error", "players", "permission", "user", "group", "track",
})
handle_pattern = re.compile(r"\w{2,16}")

SendLine = Callable[[str], Awaitable[bool]]


def extract_rank(line: str) -> Optional[str]:
    match = rank_line_pattern.match(line.strip())
    if not match:
        return None
    rank = match.group(1)
    if rank.lower() in RANK_STOPLIST:
        return None
    return rank


def is_valid_handle(handle: str) -> bool:
    return bool(handle_pattern.fullmatch(handle))


@dataclass
class RankFlow:
    target: str
    flow_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    found: List[str] = field(default_factory=list)
    capturing: bool = True
    cancelled: bool = False
    completed: bool = False
    granted: Optional[str] = None
    done: asyncio.Event = field(default_factory=asyncio.Event, repr=False)

    def feed(self, line: str) -> None:
        if not self.capturing:
            return
        rank = extract_rank(line)
        if rank and rank not in self.found:
            self.found.append(rank)
            log.debug(f"Flow {self.flow_id[:8]}: found rank {rank}")


class RankDiscovery:
    """
    Owns the one active rank-assignment flow.

    Starting a new flow cancels the previous one; only the current flow can
    capture console lines or grant a rank.
    """

    def __init__(self, store: RecordStore, send: SendLine, window: float = CAPTURE_WINDOW):
        self._store = store
        self._send = send
        self._window = window
        self._current: Optional[RankFlow] = None
        self._timer: Optional[asyncio.Task] = None

    @property
    def current(self) -> Optional[RankFlow]:
        return self._current

    async def start(self, target: str) -> RankFlow:
        if not is_valid_handle(target):
            raise ValueError(f"invalid player handle: {target!r}")
        self.cancel()
        flow = RankFlow(target=target)
        self._current = flow
        log.info(f"Rank discovery {flow.flow_id[:8]} started for {target}")
        self._timer = asyncio.create_task(self._close_window(flow))
        if not await self._send("/lp listgroups"):
            log.warning(f"Could not request group list for flow {flow.flow_id[:8]}")
        return flow

    async def _close_window(self, flow: RankFlow) -> None:
        try:
            await asyncio.sleep(self._window)
        except asyncio.CancelledError:
            return
        flow.capturing = False
        flow.completed = True
        flow.done.set()
        log.info(f"Rank discovery {flow.flow_id[:8]} closed with {len(flow.found)} rank(s)")

    async def wait(self, flow: RankFlow) -> List[str]:
        """Blocks until ``flow``'s capture window closes (or it is cancelled)."""
        await flow.done.wait()
        return [] if flow.cancelled else list(flow.found)

    def feed(self, line: str) -> None:
        if self._current is not None:
            self._current.feed(line)

    async def handle_line(self, line: str) -> None:
        self.feed(line)

    def cancel(self) -> None:
        flow = self._current
        if flow is None:
            return
        if self._timer and not self._timer.done():
            self._timer.cancel()
        if not flow.completed:
            log.info(f"Rank discovery {flow.flow_id[:8]} for {flow.target} superseded")
        flow.capturing = False
        flow.cancelled = not flow.completed
        flow.done.set()
        self._current = None
        self._timer = None

    async def select(self, flow_id: str, rank: str) -> bool:
        flow = self._current
        if flow is None or flow.flow_id != flow_id:
            log.warning(f"Rank selection for stale flow {flow_id[:8]} refused")
            return False
        if not flow.completed or flow.granted or rank not in flow.found:
            return False
        # Claimed before the await so a second click on the same view is refused.
        flow.granted = rank
        if not await self._send(f"/lp user {flow.target} parent set {rank}"):
            flow.granted = None
            return False
        self._store.add_donator(flow.target, rank)
        return True
