import pytest

from commands import CommandPolicy
from dispatcher import CommandDispatcher
from store import RecordStore

from fakes import FakeClock, FakeNotifier, FakeSender, write_policy


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(tmp_path, clock):
    return RecordStore(str(tmp_path / "data.json"), clock=clock)


@pytest.fixture
def policy(tmp_path):
    return CommandPolicy(str(write_policy(tmp_path / "commands.json")))


@pytest.fixture
def sender():
    return FakeSender()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def dispatcher(store, policy, sender, notifier):
    return CommandDispatcher(store, policy, sender, admins=["Owner"], notify=notifier)
