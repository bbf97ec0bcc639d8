# store.py
import json
import logging
import os
import tempfile
import time
from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, List, Optional

from config import AUDIT_LOG_LIMIT, DEFAULT_COOLDOWN

log = logging.getLogger(__name__)

STAT_COMMANDS = "total_commands"
STAT_DONATORS = "total_donators"
STAT_BLOCKED = "blocked_attempts"


@dataclass
class Donator:
    tier: str
    created_at: float
    admin: bool = False


@dataclass
class AuditEntry:
    timestamp: float
    player: str
    command: str
    allowed: bool
    reason: str = ""


def _empty_document() -> Dict[str, Any]:
    return {
        "donators": {},
        "cooldowns": {},
        "logs": [],
        "stats": {STAT_COMMANDS: 0, STAT_DONATORS: 0, STAT_BLOCKED: 0},
    }


class RecordStore:
    """
    Owns every persisted entity: donators, cooldowns, the audit log and the
    aggregate counters. Each mutation rewrites the whole JSON document.

    The file is replaced atomically (temp file + os.replace), so readers never
    see a partially written document, but there is no locking between writers.
    """

    def __init__(self, path: str, clock: Callable[[], float] = time.time,
                 log_limit: int = AUDIT_LOG_LIMIT):
        self._path = path
        self._clock = clock
        self._log_limit = log_limit
        self.data: Dict[str, Any] = _empty_document()
        self.load()

    # --- Persistence ---
    def load(self) -> None:
        if not os.path.exists(self._path):
            log.info(f"No record file at {self._path}, creating it.")
            self.save()
            return
        try:
            with open(self._path, "r", encoding="utf-8") as f:
                raw = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            log.error(f"Failed to load {self._path}: {e}. Using empty records.")
            self.data = _empty_document()
            return
        if not isinstance(raw, dict):
            log.error(f"{self._path} is not a JSON object. Using empty records.")
            self.data = _empty_document()
            return

        data = _empty_document()
        for key in ("donators", "cooldowns", "stats"):
            if isinstance(raw.get(key), dict):
                data[key].update(raw[key])
        if isinstance(raw.get("logs"), list):
            data["logs"] = raw["logs"][-self._log_limit:]
        self.data = data
        log.info(f"Loaded {len(data['donators'])} donator(s) from {self._path}")

    def save(self) -> None:
        directory = os.path.dirname(os.path.abspath(self._path))
        try:
            fd, tmp_path = tempfile.mkstemp(prefix=".records-", suffix=".tmp", dir=directory)
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(self.data, f, indent=2, ensure_ascii=False)
            os.replace(tmp_path, self._path)
        except OSError as e:
            log.error(f"Failed to save {self._path}: {e}")

    # --- Donators ---
    def get_donator(self, handle: str) -> Optional[Donator]:
        raw = self.data["donators"].get(handle)
        if not raw:
            return None
        return Donator(
            tier=str(raw.get("tier") or ""),
            created_at=raw.get("created_at", 0),
            admin=bool(raw.get("admin", False)),
        )

    def all_donators(self) -> Dict[str, Donator]:
        result = {}
        for handle in self.data["donators"]:
            donator = self.get_donator(handle)
            if donator:
                result[handle] = donator
        return result

    def add_donator(self, handle: str, tier: str, admin: bool = False) -> Donator:
        if not tier:
            raise ValueError("tier must be a non-empty string")
        donator = Donator(tier=tier, created_at=self._clock(), admin=admin)
        self.data["donators"][handle] = asdict(donator)
        self.data["stats"][STAT_DONATORS] = self.data["stats"].get(STAT_DONATORS, 0) + 1
        self.save()
        log.info(f"Donator granted: {handle} - {tier}{' (admin)' if admin else ''}")
        return donator

    def promote_donator(self, handle: str, tier: str) -> bool:
        raw = self.data["donators"].get(handle)
        if not raw or not tier:
            return False
        raw["tier"] = tier
        self.save()
        log.info(f"Donator {handle} moved to tier {tier}")
        return True

    def remove_donator(self, handle: str) -> bool:
        if handle not in self.data["donators"]:
            return False
        del self.data["donators"][handle]
        self.save()
        log.info(f"Donator removed: {handle}")
        return True

    # --- Cooldowns ---
    def set_cooldown(self, handle: str, seconds: float = DEFAULT_COOLDOWN) -> None:
        if seconds <= 0:
            # A zero or negative duration means no cooldown at all.
            if self.data["cooldowns"].pop(handle, None) is not None:
                self.save()
            return
        now = self._clock()
        self.data["cooldowns"][handle] = {"last_command": now, "expires_at": now + seconds}
        self.save()

    def cooldown_remaining(self, handle: str) -> float:
        """Seconds left on ``handle``'s cooldown; expired records are dropped."""
        cooldown = self.data["cooldowns"].get(handle)
        if not cooldown:
            return 0.0
        remaining = cooldown.get("expires_at", 0) - self._clock()
        if remaining <= 0:
            del self.data["cooldowns"][handle]
            self.save()
            return 0.0
        return remaining

    # --- Audit log ---
    def add_log(self, player: str, command: str, allowed: bool, reason: str = "") -> AuditEntry:
        entry = AuditEntry(self._clock(), player, command, allowed, reason)
        logs: List[Dict[str, Any]] = self.data["logs"]
        logs.append(asdict(entry))
        if len(logs) > self._log_limit:
            del logs[:len(logs) - self._log_limit]
        self.save()
        return entry

    def recent_logs(self, limit: int) -> List[Dict[str, Any]]:
        if limit < 1:
            return []
        return list(self.data["logs"][-limit:])

    # --- Stats ---
    @property
    def stats(self) -> Dict[str, int]:
        return dict(self.data["stats"])

    def increment(self, counter: str, amount: int = 1) -> int:
        stats = self.data["stats"]
        stats[counter] = stats.get(counter, 0) + amount
        self.save()
        return stats[counter]
