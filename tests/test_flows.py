"""Rank discovery flow tests."""
import asyncio

import pytest

from flows import RankDiscovery, extract_rank, is_valid_handle

from fakes import FakeSender

LP_OUTPUT = [
    "[LP] Showing group entries:",
    "[LP] - admin",
    "- vip",
    "– premium",
    "- groups",
    "- vip",
    "<Alice> - not a rank line",
]


def test_extract_rank():
    assert extract_rank("- vip") == "vip"
    assert extract_rank("[LP] - Diamond_2") == "Diamond_2"
    assert extract_rank("- luckperms") is None
    assert extract_rank("hello - world") is None


def test_handle_validation():
    assert is_valid_handle("Al")
    assert is_valid_handle("Player_123")
    assert not is_valid_handle("A")
    assert not is_valid_handle("x" * 17)
    assert not is_valid_handle("bad name")
    assert not is_valid_handle("Alice\n")
    assert not is_valid_handle(" Alice")


@pytest.mark.asyncio
async def test_flow_collects_ranks_and_grants(store):
    sender = FakeSender()
    discovery = RankDiscovery(store, sender, window=0.01)

    flow = await discovery.start("Alice")
    for line in LP_OUTPUT:
        discovery.feed(line)
    found = await discovery.wait(flow)

    assert sender.lines == ["/lp listgroups"]
    assert found == ["admin", "vip", "premium"]

    discovery.feed("- late")
    assert "late" not in flow.found

    assert await discovery.select(flow.flow_id, "vip")
    assert sender.lines[-1] == "/lp user Alice parent set vip"
    assert store.get_donator("Alice").tier == "vip"
    assert not await discovery.select(flow.flow_id, "premium")


@pytest.mark.asyncio
async def test_selection_requires_closed_window_and_known_rank(store):
    discovery = RankDiscovery(store, FakeSender(), window=0.05)
    flow = await discovery.start("Alice")
    discovery.feed("- vip")

    assert not await discovery.select(flow.flow_id, "vip")

    await discovery.wait(flow)
    assert not await discovery.select(flow.flow_id, "made_up")
    assert store.get_donator("Alice") is None


@pytest.mark.asyncio
async def test_new_flow_supersedes_old(store):
    sender = FakeSender()
    discovery = RankDiscovery(store, sender, window=0.01)

    first = await discovery.start("Alice")
    discovery.feed("- vip")
    second = await discovery.start("Bob")
    discovery.feed("- premium")

    assert await discovery.wait(first) == []
    assert first.cancelled
    assert await discovery.wait(second) == ["premium"]
    assert not await discovery.select(first.flow_id, "vip")
    assert await discovery.select(second.flow_id, "premium")
    assert store.get_donator("Alice") is None
    assert store.get_donator("Bob").tier == "premium"


@pytest.mark.asyncio
async def test_failed_grant_writes_nothing(store):
    discovery = RankDiscovery(store, FakeSender(ok=False), window=0.01)
    flow = await discovery.start("Alice")
    discovery.feed("- vip")
    await discovery.wait(flow)

    assert not await discovery.select(flow.flow_id, "vip")
    assert store.get_donator("Alice") is None
    assert flow.granted is None

    discovery._send = FakeSender()
    assert await discovery.select(flow.flow_id, "vip")
    assert store.get_donator("Alice").tier == "vip"


@pytest.mark.asyncio
async def test_invalid_target_rejected(store):
    discovery = RankDiscovery(store, FakeSender())
    with pytest.raises(ValueError):
        await discovery.start("not valid")
    assert discovery.current is None


@pytest.mark.asyncio
async def test_cancel_releases_waiters(store):
    discovery = RankDiscovery(store, FakeSender(), window=10)
    flow = await discovery.start("Alice")
    waiter = asyncio.create_task(discovery.wait(flow))
    await asyncio.sleep(0)
    discovery.cancel()
    assert await asyncio.wait_for(waiter, timeout=1) == []


class YieldingSender(FakeSender):
    async def __call__(self, line):
        await asyncio.sleep(0.01)
        return await super().__call__(line)


@pytest.mark.asyncio
async def test_double_click_grants_once(store):
    sender = YieldingSender()
    discovery = RankDiscovery(store, sender, window=0.01)
    flow = await discovery.start("Alice")
    discovery.feed("- vip")
    await discovery.wait(flow)

    results = await asyncio.gather(
        discovery.select(flow.flow_id, "vip"),
        discovery.select(flow.flow_id, "vip"),
    )

    assert sorted(results) == [False, True]
    assert sender.lines.count("/lp user Alice parent set vip") == 1
    assert store.stats["total_donators"] == 1
