import json
from pathlib import Path

from commands import CommandPolicy

from fakes import write_policy

REPO_ROOT = Path(__file__).resolve().parent.parent


def test_missing_policy_file_is_created_empty(tmp_path):
    path = tmp_path / "commands.json"
    policy = CommandPolicy(str(path))
    assert json.loads(path.read_text()) == {"allowedCommands": {}, "bannedCommands": {}, "ranks": {}}
    assert not policy.is_allowed("heal")


def test_lookups_are_case_insensitive(policy):
    assert policy.is_allowed("HEAL")
    assert policy.is_banned("Op")
    assert not policy.is_allowed("tpall")
    assert policy.get_command("Fly")["requiredRank"] == "DIAMOND"


def test_rank_levels(policy):
    assert policy.rank_level("VIP") == 1
    assert policy.rank_level("diamond") == 3
    assert policy.rank_level("ghost") == 0
    assert policy.rank_level(None) == 0
    assert policy.can_rank_use("PREMIUM", "heal")
    assert not policy.can_rank_use("PREMIUM", "fly")
    assert not policy.can_rank_use("DIAMOND", "unknown")


def test_cooldown_for_falls_back(policy):
    assert policy.cooldown_for("speed", 300) == 60
    assert policy.cooldown_for("missing", 300) == 300


def test_reload_picks_up_changes(tmp_path):
    path = write_policy(tmp_path / "commands.json")
    policy = CommandPolicy(str(path))
    assert policy.is_allowed("heal")

    write_policy(path, {"allowedCommands": {"heal": {"enabled": False}}, "ranks": {}})
    policy.reload()
    assert not policy.is_allowed("heal")
    assert policy.banned_commands() == {}


def test_unparseable_policy_is_empty(tmp_path):
    path = tmp_path / "commands.json"
    path.write_text("[1, 2", encoding="utf-8")
    policy = CommandPolicy(str(path))
    assert policy.allowed_commands() == {}


def test_shipped_policy_loads():
    policy = CommandPolicy(str(REPO_ROOT / "commands.json"))
    assert policy.is_allowed("heal")
    assert policy.is_banned("op")
    assert policy.rank_level("DIAMOND") > policy.rank_level("PREMIUM") > policy.rank_level("VIP")
