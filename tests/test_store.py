import json

import pytest

from store import STAT_DONATORS, RecordStore

from fakes import FakeClock


def test_missing_file_is_created(tmp_path):
    path = tmp_path / "data.json"
    RecordStore(str(path))
    data = json.loads(path.read_text(encoding="utf-8"))
    assert data["donators"] == {} and data["logs"] == []


def test_corrupt_file_falls_back_to_defaults(tmp_path, caplog):
    path = tmp_path / "data.json"
    path.write_text("{not json", encoding="utf-8")
    store = RecordStore(str(path))
    assert store.all_donators() == {}
    assert store.stats[STAT_DONATORS] == 0
    assert "Failed to load" in caplog.text


def test_wrong_shape_is_ignored(tmp_path):
    path = tmp_path / "data.json"
    path.write_text(json.dumps({"donators": [], "logs": {}, "stats": {"total_commands": 4}}))
    store = RecordStore(str(path))
    assert store.all_donators() == {}
    assert store.recent_logs(5) == []
    assert store.stats["total_commands"] == 4


def test_donators_persist_across_reload(tmp_path, clock):
    path = str(tmp_path / "data.json")
    store = RecordStore(path, clock=clock)
    store.add_donator("Alice", "VIP")
    store.add_donator("Alice", "PREMIUM")

    reloaded = RecordStore(path, clock=clock)
    alice = reloaded.get_donator("Alice")
    assert alice.tier == "PREMIUM" and alice.created_at == clock.now and not alice.admin
    assert len(reloaded.all_donators()) == 1
    assert reloaded.stats[STAT_DONATORS] == 2


def test_promote_and_remove(store):
    assert not store.promote_donator("Ghost", "VIP")
    store.add_donator("Alice", "VIP")
    assert store.promote_donator("Alice", "DIAMOND")
    assert store.get_donator("Alice").tier == "DIAMOND"
    assert store.remove_donator("Alice")
    assert not store.remove_donator("Alice")
    assert store.get_donator("Alice") is None


def test_handles_are_case_sensitive(store):
    store.add_donator("Alice", "VIP")
    assert store.get_donator("alice") is None


def test_cooldown_expires_lazily(store, clock):
    store.set_cooldown("Alice", 30)
    assert store.cooldown_remaining("Alice") == 30
    cooldown = store.data["cooldowns"]["Alice"]
    assert cooldown["expires_at"] > cooldown["last_command"]

    clock.advance(31)
    assert store.cooldown_remaining("Alice") == 0.0
    assert "Alice" not in store.data["cooldowns"]


@pytest.mark.parametrize("seconds", [0, -5])
def test_non_positive_cooldown_sets_nothing(store, seconds):
    store.set_cooldown("Alice", 30)
    store.set_cooldown("Alice", seconds)
    assert "Alice" not in store.data["cooldowns"]
    assert store.cooldown_remaining("Alice") == 0.0


def test_audit_log_keeps_newest_thousand_in_order(tmp_path, monkeypatch):
    store = RecordStore(str(tmp_path / "data.json"), clock=FakeClock())
    monkeypatch.setattr(store, "save", lambda: None)

    for i in range(1005):
        store.add_log(f"p{i}", "heal", True)

    logs = store.data["logs"]
    assert len(logs) == 1000
    assert logs[0]["player"] == "p5"
    assert logs[-1]["player"] == "p1004"
    assert [e["player"] for e in store.recent_logs(3)] == ["p1002", "p1003", "p1004"]


def test_save_leaves_no_temp_files(store, tmp_path):
    store.add_donator("Alice", "VIP")
    store.add_log("Alice", "heal", True)
    assert sorted(p.name for p in tmp_path.iterdir()) == ["data.json"]
