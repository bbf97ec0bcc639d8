from effects import EFFECTS, get_effect, parse_level


def test_parse_level():
    assert parse_level("", 2) == 2
    assert parse_level("4", 2) == 4
    assert parse_level("lots", 2) == 2
    assert parse_level("9999", 1) == 255


def test_status_effect_uses_player_and_level():
    assert get_effect("SPEED").build("Alice", "3") == [
        "/effect give Alice minecraft:speed 300 3", "⚡ Speed boosted, Alice!"]
    assert get_effect("speed").build("Alice", "")[0].endswith(" 2")


def test_give_defaults_amount():
    assert EFFECTS["give"].build("Alice", "diamond")[0] == "/give Alice diamond 1"
    assert EFFECTS["give"].build("Alice", "diamond 5 extra")[0] == "/give Alice diamond 5"


def test_coordinates_default_to_relative():
    assert EFFECTS["teleport"].build("Owner", "10 64")[0] == "/teleport Owner 10 64 ~"


def test_admin_only_set():
    admin_only = {name for name, e in EFFECTS.items() if e.admin_only}
    assert {"say", "broadcast", "op", "ban", "spawnpoint", "weather"} <= admin_only
    assert not admin_only & {"heal", "give", "fly", "list", "tpall"}


def test_commands_needing_a_target_declare_usage():
    for name in ("give", "effect", "say", "kick", "ban", "op", "tp", "summon"):
        assert EFFECTS[name].requires_args, name
    assert not EFFECTS["heal"].requires_args
