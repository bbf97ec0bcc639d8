# config.py
import os
import logging
from dataclasses import dataclass
from dotenv import load_dotenv
from typing import Final, List, Mapping, Optional, Tuple

load_dotenv()

# --- Reachability / Reconnect Config ---
PROBE_INTERVAL: Final = 30.0; PROBE_TIMEOUT: Final = 5.0
OFFLINE_RETRY_DELAY: Final = 30.0
RECONNECT_MULTIPLIER: Final = 5.0
RECONNECT_MAX_DELAY: Final = 120.0
MAX_RECONNECT_ATTEMPTS: Final = 20
GREETING_DELAY: Final = 2.0

# --- (Discord <-> WebSocket <-> Pterodactyl) Buffer Config ---
WS_PING_INTERVAL = 20; WS_PING_TIMEOUT = 10
WS_AUTH_TIMEOUT = 10
LOG_BUFFER_SIZE = 500

# --- Donator / Command Config ---
CAPTURE_WINDOW: Final = 3.0
AUDIT_LOG_LIMIT: Final = 1000
DEFAULT_COOLDOWN: Final = 300
DEFAULT_LOGS_LIMIT: Final = 50
GREETING_LINE = "🤖 Donator bridge online!"

# --- Logging Configuration ---
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FORMAT = '%(asctime)s:%(levelname)s:%(name)s:%(funcName)s: %(message)s'
logging.basicConfig(level=LOG_LEVEL, format=LOG_FORMAT)
log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Settings:
    discord_token: Optional[str]
    operator_id: Optional[int]
    guild_id: Optional[int]
    panel_url: Optional[str]
    panel_api_key: Optional[str]
    panel_server_id: Optional[str]
    mc_host: str = "localhost"
    mc_port: int = 25565
    mc_username: str = "DonatorBridge"
    mc_version: str = "1.20.1"
    http_host: str = "0.0.0.0"
    http_port: int = 10000
    data_path: str = "data.json"
    commands_path: str = "commands.json"
    game_admins: Tuple[str, ...] = ()


def _int_or_none(name: str, raw: Optional[str]) -> Optional[int]:
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError:
        log.critical(f"{name} invalid!")
        return None


def _int_or_default(name: str, raw: Optional[str], default: int) -> int:
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        log.error(f"{name}={raw!r} is not an integer, using {default}")
        return default


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    """Builds the immutable settings record from the environment (or ``environ``)."""
    env = os.environ if environ is None else environ
    admins = tuple(a.strip() for a in env.get("GAME_ADMINS", "").split(",") if a.strip())
    panel_url = env.get("PTERODACTYL_URL")
    return Settings(
        discord_token=env.get("DISCORD_TOKEN") or None,
        operator_id=_int_or_none("OPERATOR_ID", env.get("OPERATOR_ID")),
        guild_id=_int_or_none("DISCORD_GUILD_ID", env.get("DISCORD_GUILD_ID")),
        panel_url=panel_url.rstrip("/") if panel_url else None,
        panel_api_key=env.get("PTERODACTYL_API_KEY") or None,
        panel_server_id=env.get("PTERODACTYL_SERVER_ID") or None,
        mc_host=env.get("MC_HOST") or Settings.mc_host,
        mc_port=_int_or_default("MC_PORT", env.get("MC_PORT"), Settings.mc_port),
        mc_username=env.get("MC_USERNAME") or Settings.mc_username,
        mc_version=env.get("MC_VERSION") or Settings.mc_version,
        http_host=env.get("HTTP_HOST") or Settings.http_host,
        http_port=_int_or_default("PORT", env.get("PORT"), Settings.http_port),
        data_path=env.get("DATA_PATH") or Settings.data_path,
        commands_path=env.get("COMMANDS_PATH") or Settings.commands_path,
        game_admins=admins,
    )


# --- Validation ---
def missing_settings(settings: Settings) -> List[str]:
    required = {
        "DISCORD_TOKEN": settings.discord_token,
        "OPERATOR_ID": settings.operator_id,
        "PTERODACTYL_URL": settings.panel_url,
        "PTERODACTYL_API_KEY": settings.panel_api_key,
        "PTERODACTYL_SERVER_ID": settings.panel_server_id,
    }
    missing = [name for name, value in required.items() if value is None]
    if missing: log.critical(f"Missing critical env vars: {', '.join(missing)}.")
    return missing
