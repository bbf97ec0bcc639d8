import asyncio
import logging

import pytest

from notifier import BackgroundNotifier


@pytest.mark.asyncio
async def test_call_returns_before_delivery_finishes():
    release = asyncio.Event()
    delivered = []

    async def slow_deliver(text):
        await release.wait()
        delivered.append(text)

    notify = BackgroundNotifier(slow_deliver)
    await asyncio.wait_for(notify("🚀 Alice joined"), timeout=1)

    assert delivered == [] and notify.pending == 1
    release.set()
    await notify.drain()
    assert delivered == ["🚀 Alice joined"]
    assert notify.pending == 0


@pytest.mark.asyncio
async def test_failed_delivery_is_logged(caplog):
    async def broken(text):
        raise RuntimeError("discord down")

    notify = BackgroundNotifier(broken)
    with caplog.at_level(logging.ERROR, logger="notifier"):
        await notify("hello")
        await notify.drain()
        await asyncio.sleep(0)

    assert notify.pending == 0
    assert "Operator notification task failed" in caplog.text
