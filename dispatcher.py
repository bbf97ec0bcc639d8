# dispatcher.py
import logging
import math
import re
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterable, Optional

from commands import CommandPolicy
from config import DEFAULT_COOLDOWN
from effects import Effect, get_effect
from store import Donator, RecordStore, STAT_BLOCKED, STAT_COMMANDS

log = logging.getLogger(__name__)

# "<Alice> !give diamond 5", optionally tagged by newer servers as "[Not Secure]"
chat_command_pattern = re.compile(r"^(?:\[Not Secure\]\s*)?<([^>\s]+)>\s*!([\w-]+)\s*(.*)$")

# --- Rejection reasons (also written to the audit log) ---
NOT_DONATOR = "not a donator"
BLOCKED = "blocked"
UNKNOWN = "unknown command"
ADMIN_ONLY = "administrator only"
INSUFFICIENT_RANK = "insufficient rank"
COOLDOWN = "cooldown"
USAGE = "usage"
DELIVERY_FAILED = "delivery failed"
OK = "ok"
ADMIN = "admin"

SendLine = Callable[[str], Awaitable[bool]]
Notify = Callable[[str], Awaitable[None]]


@dataclass(frozen=True)
class ChatCommand:
    speaker: str
    name: str
    args: str


@dataclass(frozen=True)
class Capabilities:
    """Everything the pipeline needs to know about a speaker, resolved once."""
    handle: str
    is_admin: bool
    donator: Optional[Donator]
    tier: Optional[str]
    level: int


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: str
    remaining: float = 0.0


def parse_chat_command(line: str) -> Optional[ChatCommand]:
    match = chat_command_pattern.match(line.strip())
    if not match:
        return None
    return ChatCommand(match.group(1), match.group(2).lower(), match.group(3).strip())


def format_remaining(seconds: float) -> str:
    total = max(0, math.ceil(seconds))
    return f"{total // 60}m {total % 60}s"


class CommandDispatcher:
    """
    Turns player chat commands into console effects.

    Checks run in a fixed order and stop at the first failure:
    administrator bypass, donator record, blocked table, policy table,
    administrator-only effects, tier level, cooldown. Every rejection is
    answered in game chat; nothing raises out of handle_line().
    """

    def __init__(self, store: RecordStore, policy: CommandPolicy, send: SendLine,
                 admins: Iterable[str] = (), notify: Optional[Notify] = None):
        self._store = store
        self._policy = policy
        self._send = send
        self._admins = frozenset(admins)
        self._notify = notify

    def resolve_capabilities(self, handle: str) -> Capabilities:
        donator = self._store.get_donator(handle)
        is_admin = handle in self._admins or bool(donator and donator.admin)
        tier = donator.tier if donator else None
        return Capabilities(handle, is_admin, donator, tier, self._policy.rank_level(tier))

    def authorize(self, caps: Capabilities, name: str) -> Decision:
        if caps.is_admin:
            return Decision(True, ADMIN)
        if caps.donator is None:
            return Decision(False, NOT_DONATOR)
        if self._policy.is_banned(name):
            return Decision(False, BLOCKED)
        effect = get_effect(name)
        if not self._policy.is_allowed(name) or effect is None:
            return Decision(False, UNKNOWN)
        if effect.admin_only:
            return Decision(False, ADMIN_ONLY)
        if not self._policy.can_rank_use(caps.tier, name):
            return Decision(False, INSUFFICIENT_RANK)
        remaining = self._store.cooldown_remaining(caps.handle)
        if remaining > 0:
            return Decision(False, COOLDOWN, remaining)
        return Decision(True, OK)

    async def handle_line(self, line: str) -> Optional[Decision]:
        """Entry point for every cleaned console line. Never raises."""
        try:
            command = parse_chat_command(line)
            if command is None:
                return None
            return await self.dispatch(command.speaker, command.name, command.args)
        except Exception:
            log.exception(f"Error handling chat line: {line!r}")
            return None

    async def dispatch(self, speaker: str, name: str, args: str = "") -> Decision:
        name = name.lower()
        caps = self.resolve_capabilities(speaker)
        decision = self.authorize(caps, name)

        if not decision.allowed:
            await self._reject(caps, name, decision)
            return decision

        effect = get_effect(name)
        if effect is None:
            # Only reachable for administrators, who skip the policy table.
            await self._send(f"❌ Command !{name} not found")
            return Decision(False, UNKNOWN)

        if effect.requires_args and not args:
            await self._send(f"❌ Usage: {effect.usage}")
            return Decision(False, USAGE)

        log.info(f"Command accepted: {speaker} -> !{name} {args}".rstrip())
        if not await self._execute(effect, speaker, args):
            log.warning(f"Command !{name} for {speaker} was not delivered to the console")
            self._store.add_log(speaker, name, False, DELIVERY_FAILED)
            return Decision(False, DELIVERY_FAILED)

        if not caps.is_admin:
            cooldown = self._policy.cooldown_for(name, DEFAULT_COOLDOWN)
            self._store.set_cooldown(speaker, cooldown)
        self._store.increment(STAT_COMMANDS)
        self._store.add_log(speaker, name, True, decision.reason)
        return decision

    async def _execute(self, effect: Effect, speaker: str, args: str) -> bool:
        """Sends the effect's lines in order; False as soon as one is not delivered."""
        for line in effect.build(speaker, args):
            if not await self._send(line):
                return False
        return True

    async def _reject(self, caps: Capabilities, name: str, decision: Decision) -> None:
        speaker = caps.handle
        reason = decision.reason
        log.info(f"Rejected {speaker} -> !{name}: {reason}")

        if reason == NOT_DONATOR:
            # Unknown chatters do not get to grow the audit log.
            await self._send(f"❌ {speaker}, commands are for donators only!")
            return

        if reason == BLOCKED:
            info = self._policy.get_banned(name) or {}
            log.warning(f"Blocked command attempt: {speaker} -> !{name} "
                        f"(severity={info.get('severity', 'unknown')})")
            await self._send(f"🔒 {speaker}, command !{name} is forbidden!")
            self._store.increment(STAT_BLOCKED)
            if self._notify:
                await self._notify(
                    f"🔒 {speaker} tried blocked command !{name}"
                    f" [{info.get('severity', 'unknown')}] {info.get('reason', '')}".rstrip())
        elif reason == UNKNOWN:
            await self._send(f"❌ {speaker}, unknown command !{name}")
        elif reason == ADMIN_ONLY:
            await self._send(f"❌ {speaker}, !{name} is for the server owner only!")
        elif reason == INSUFFICIENT_RANK:
            required = (self._policy.get_command(name) or {}).get("requiredRank", "?")
            await self._send(f"❌ {speaker}, !{name} requires {required}+!")
        elif reason == COOLDOWN:
            await self._send(f"⏱️ {speaker}, wait {format_remaining(decision.remaining)}!")

        self._store.add_log(speaker, name, False, reason)
