# effects.py
"""
Outbound lines for every chat command a player can trigger.

Each builder takes ``(player, args)`` and returns the lines to send through
the game session. Lines starting with ``/`` run as console commands, the rest
are shown in game chat.
"""
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

EFFECT_DURATION = 300
MAX_EFFECT_LEVEL = 255

LineBuilder = Callable[[str, str], List[str]]


@dataclass(frozen=True)
class Effect:
    build: LineBuilder
    usage: Optional[str] = None
    admin_only: bool = False

    @property
    def requires_args(self) -> bool:
        return self.usage is not None


def parse_level(args: str, default: int) -> int:
    token = args.split()[0] if args.split() else ""
    if not token.isdigit():
        return default
    return min(int(token), MAX_EFFECT_LEVEL)


def _status(effect_id: str, reply: str, level: int = 1, duration: int = EFFECT_DURATION,
            level_from_args: bool = False) -> Effect:
    def build(player: str, args: str) -> List[str]:
        lvl = parse_level(args, level) if level_from_args else level
        return [f"/effect give {player} {effect_id} {duration} {lvl}", f"{reply}, {player}!"]
    return Effect(build)


def _console(command: str, reply: str, usage: Optional[str] = None,
             admin_only: bool = True) -> Effect:
    """``command`` and ``reply`` are format strings over ``player`` and ``args``."""
    def build(player: str, args: str) -> List[str]:
        return [command.format(player=player, args=args), reply.format(player=player, args=args)]
    return Effect(build, usage=usage, admin_only=admin_only)


def _give(player: str, args: str) -> List[str]:
    parts = args.split()
    item = parts[0]
    amount = parts[1] if len(parts) > 1 and parts[1].isdigit() else "1"
    return [f"/give {player} {item} {amount}", f"✅ {player}, given: {item} x{amount}"]


def _gamemode(player: str, args: str) -> List[str]:
    mode = args.split()[0] if args else "creative"
    return [f"/gamemode {mode} {player}", f"🎮 Game mode: {mode}"]


def _effect(player: str, args: str) -> List[str]:
    parts = args.split()
    level = parse_level(" ".join(parts[1:]), 1)
    return [f"/effect give {player} {parts[0]} {EFFECT_DURATION} {level}", f"✨ Effect: {parts[0]}"]


def _say(player: str, args: str) -> List[str]:
    return [args]


def _broadcast(player: str, args: str) -> List[str]:
    return [f"§c§l[ANNOUNCEMENT]§r §6{args}"]


def _coords(template: str, reply: str) -> LineBuilder:
    def build(player: str, args: str) -> List[str]:
        x, y, z = (args.split() + ["~", "~", "~"])[:3]
        return [template.format(player=player, x=x, y=y, z=z), reply]
    return build


def _gamerule(player: str, args: str) -> List[str]:
    parts = args.split()
    value = parts[1] if len(parts) > 1 else "true"
    return [f"/gamerule {parts[0]} {value}", "⚙️ Game rule updated!"]


def _with_default(template: str, reply: str, default: str) -> LineBuilder:
    def build(player: str, args: str) -> List[str]:
        value = args.split()[0] if args else default
        return [template.format(player=player, value=value), reply.format(value=value)]
    return build


EFFECTS: Dict[str, Effect] = {
    # --- Player perks ---
    "give": Effect(_give, usage="!give <item> [amount]"),
    "heal": _status("minecraft:instant_health", "💚 Healed", level=10, duration=1),
    "tpall": _console("/execute as @a at {player} run teleport @s ~ ~ ~",
                      "🌍 {player}, everyone was teleported to you!", admin_only=False),
    "gamemode": Effect(_gamemode),
    "effect": Effect(_effect, usage="!effect <effect> [level]"),
    "fly": _console("/ability {player} mayfly true", "🪁 Flight enabled!", admin_only=False),
    "speed": _status("minecraft:speed", "⚡ Speed boosted", level=2, level_from_args=True),
    "strength": _status("minecraft:strength", "💪 Strength boosted", level_from_args=True),
    "jump": _status("minecraft:jump_boost", "⬆️ Jump boosted", level=5, level_from_args=True),
    "invisibility": _status("minecraft:invisibility", "👻 Invisible"),
    "nightvision": _status("minecraft:night_vision", "👁️ Night vision"),
    "resistance": _status("minecraft:resistance", "🛡️ Resistance on", level=5, level_from_args=True),
    "absorption": _status("minecraft:absorption", "❤️ Extra hearts", level=5, level_from_args=True),
    "haste": _status("minecraft:haste", "⚙️ Haste", level=2, level_from_args=True),
    "saturation": _status("minecraft:saturation", "🍗 Saturated", level=10, duration=1),
    "water_breathing": _status("minecraft:water_breathing", "🌊 Water breathing"),
    "fire_resistance": _status("minecraft:fire_resistance", "🔥 Fire resistant"),
    "slowness": _status("minecraft:slowness", "🐌 Slowness", level_from_args=True),
    "mining_fatigue": _status("minecraft:mining_fatigue", "🧱 Mining fatigue", level_from_args=True),
    "nausea": _status("minecraft:nausea", "🌀 Nausea"),
    "blindness": _status("minecraft:blindness", "⚫ Blindness"),
    "hunger": _status("minecraft:hunger", "😵 Hunger", level_from_args=True),
    "weakness": _status("minecraft:weakness", "❌ Weakness", level_from_args=True),
    "poison": _status("minecraft:poison", "☠️ Poison", level_from_args=True),
    "wither": _status("minecraft:wither", "💀 Wither", level_from_args=True),
    "levitation": _status("minecraft:levitation", "⬆️ Levitation", level_from_args=True),
    "glowing": _status("minecraft:glowing", "✨ Glowing"),
    "luck": _status("minecraft:luck", "🍀 Luck", level=3, level_from_args=True),
    "unluck": _status("minecraft:unluck", "🍂 Bad luck", level=3, level_from_args=True),
    "list": _console("/list", "👥 Player list is above!", admin_only=False),

    # --- Administrator only ---
    "say": Effect(_say, usage="!say <text>", admin_only=True),
    "broadcast": Effect(_broadcast, usage="!broadcast <text>", admin_only=True),
    "clear": _console("/clear {player}", "🧹 Inventory cleared!"),
    "weather": Effect(_with_default("/weather {value}", "⛅ Weather: {value}", "clear"), admin_only=True),
    "time": Effect(_with_default("/time set {value}", "⏰ Time set to {value}!", "12000"), admin_only=True),
    "kill": _console("/kill {args}", "⚔️ {args} was killed!", usage="!kill <player>"),
    "tp": _console("/tp {args}", "🚀 Teleported!", usage="!tp <player>"),
    "teleport": Effect(_coords("/teleport {player} {x} {y} {z}", "📍 Teleported to coordinates!"),
                       usage="!teleport <x> <y> <z>", admin_only=True),
    "summon": _console("/summon {args}", "✨ Summoned!", usage="!summon <entity>"),
    "difficulty": Effect(_with_default("/difficulty {value}", "📊 Difficulty: {value}", "normal"),
                         admin_only=True),
    "gamerule": Effect(_gamerule, usage="!gamerule <rule> [value]", admin_only=True),
    "seed": _console("/seed", "🌱 Seed is above!"),
    "save-all": _console("/save-all", "💾 World saved!"),
    "reload": _console("/reload", "🔄 Reloaded!"),
    "pardon": _console("/pardon {args}", "✅ {args} was unbanned!", usage="!pardon <player>"),
    "ban": _console("/ban {args}", "❌ {args} was banned!", usage="!ban <player>"),
    "kick": _console("/kick {args}", "👢 {args} was kicked!", usage="!kick <player>"),
    "op": _console("/op {args}", "👑 {args} is now an operator!", usage="!op <player>"),
    "deop": _console("/deop {args}", "❌ {args} is no longer an operator!", usage="!deop <player>"),
    "scoreboard": _console("/scoreboard {args}", "📊 Scoreboard updated!", usage="!scoreboard <command>"),
    "worldborder": _console("/worldborder set {args}", "🌍 World border set!", usage="!worldborder <size>"),
    "spawnpoint": Effect(_coords("/spawnpoint {player} {x} {y} {z}", "🏠 Spawn point set!"),
                         usage="!spawnpoint <x> <y> <z>", admin_only=True),
}


def get_effect(name: str) -> Optional[Effect]:
    return EFFECTS.get(name.lower())
