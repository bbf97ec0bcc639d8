# notifier.py
import asyncio
import logging
from typing import Awaitable, Callable, Set

log = logging.getLogger(__name__)


class BackgroundNotifier:
    """
    Fire-and-forget wrapper around an operator notification coroutine.

    Calling it schedules the delivery as a task and returns at once, so
    console reading never waits on the messaging backend.
    """

    def __init__(self, deliver: Callable[[str], Awaitable[None]]):
        self._deliver = deliver
        self._pending: Set[asyncio.Task] = set()

    async def __call__(self, text: str) -> None:
        task = asyncio.create_task(self._deliver(text))
        self._pending.add(task)
        task.add_done_callback(self._on_done)

    @property
    def pending(self) -> int:
        return len(self._pending)

    def _on_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        try:
            task.result()
        except asyncio.CancelledError:
            pass
        except Exception:
            log.exception("Operator notification task failed:")

    async def drain(self) -> None:
        """Waits for every scheduled notification to finish."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
