# commands.py
import json
import logging
import os
from typing import Any, Dict, Optional

log = logging.getLogger(__name__)


def _empty_policy() -> Dict[str, Dict[str, Any]]:
    return {"allowedCommands": {}, "bannedCommands": {}, "ranks": {}}


class CommandPolicy:
    """Read-only view over commands.json; changes only through reload()."""

    def __init__(self, path: str):
        self._path = path
        self.config: Dict[str, Dict[str, Any]] = _empty_policy()
        self.reload()

    def reload(self) -> None:
        if not os.path.exists(self._path):
            log.error(f"{self._path} not found, writing an empty policy file.")
            self.config = _empty_policy()
            try:
                with open(self._path, "w", encoding="utf-8") as f:
                    json.dump(self.config, f, indent=2)
            except OSError as e:
                log.error(f"Could not create {self._path}: {e}")
            return
        try:
            with open(self._path, "r", encoding="utf-8") as f:
                raw = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            log.error(f"Failed to load {self._path}: {e}")
            self.config = _empty_policy()
            return

        config = _empty_policy()
        if isinstance(raw, dict):
            for section in config:
                value = raw.get(section)
                if isinstance(value, dict):
                    # Command names are matched case-insensitively.
                    if section == "ranks":
                        config[section] = dict(value)
                    else:
                        config[section] = {str(k).lower(): v for k, v in value.items()}
        else:
            log.error(f"{self._path} is not a JSON object, ignoring it.")
        self.config = config
        log.info(f"Loaded {len(config['allowedCommands'])} commands, "
                 f"{len(config['bannedCommands'])} blocked, {len(config['ranks'])} ranks")

    def get_command(self, name: str) -> Optional[Dict[str, Any]]:
        return self.config["allowedCommands"].get(name.lower())

    def get_banned(self, name: str) -> Optional[Dict[str, Any]]:
        return self.config["bannedCommands"].get(name.lower())

    def is_allowed(self, name: str) -> bool:
        cmd = self.get_command(name)
        return bool(cmd) and cmd.get("enabled") is True

    def is_banned(self, name: str) -> bool:
        entry = self.get_banned(name)
        return bool(entry) and entry.get("blocked") is True

    def rank_level(self, tier: Optional[str]) -> int:
        if not tier:
            return 0
        ranks = self.config["ranks"]
        entry = ranks.get(tier)
        if entry is None:
            lowered = tier.lower()
            entry = next((v for k, v in ranks.items() if k.lower() == lowered), None)
        if not isinstance(entry, dict):
            return 0
        try:
            return int(entry.get("level", 0))
        except (TypeError, ValueError):
            return 0

    def required_level(self, name: str) -> int:
        cmd = self.get_command(name)
        return self.rank_level(cmd.get("requiredRank")) if cmd else 0

    def can_rank_use(self, tier: Optional[str], name: str) -> bool:
        if not self.get_command(name):
            return False
        return self.rank_level(tier) >= self.required_level(name)

    def cooldown_for(self, name: str, default: float) -> float:
        cmd = self.get_command(name) or {}
        try:
            return float(cmd.get("cooldown", default))
        except (TypeError, ValueError):
            return default

    def allowed_commands(self) -> Dict[str, Any]:
        return self.config["allowedCommands"]

    def banned_commands(self) -> Dict[str, Any]:
        return self.config["bannedCommands"]

    def ranks(self) -> Dict[str, Any]:
        return self.config["ranks"]
