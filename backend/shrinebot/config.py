"""Shrine bot configuration"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)

BOT_DIR = Path(__file__).parent
BACKEND_DIR = BOT_DIR.parent

if os.getenv("SHRINE_DATA_DIR"):
    DATA_DIR = Path(os.environ["SHRINE_DATA_DIR"])
elif str(BOT_DIR).startswith("/app"):
    DATA_DIR = Path("/app/data")
else:
    DATA_DIR = BACKEND_DIR / "data"


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class BotConfig:
    TOKEN: str = os.getenv("DISCORD_BOT_TOKEN", "")
    GUILD_ID: str = os.getenv("DISCORD_GUILD_ID", "")
    DATABASE_URL: str = os.getenv("DATABASE_URL", "")

    # When false every shrine subcommand answers that the event is over
    SHRINE_COMMANDS_ENABLED: bool = _env_flag("SHRINE_COMMANDS_ENABLED", "true")


def _env_number(name: str, default: float, cast: type = float, minimum: float = 0) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = cast(raw)
    except ValueError:
        logger.warning(f"Invalid {name}={raw!r}, using default {default}")
        return default
    if value < minimum:
        logger.warning(f"{name}={raw!r} is below {minimum}, using default {default}")
        return default
    return value


@dataclass
class ScanSettings:
    """Pacing and budget knobs for a channel scan."""

    page_size: int = 10
    fetch_delay: float = 1.0
    process_delay: float = 0.25
    grant_delay: float = 1.0
    progress_every: int = 2
    max_retry_attempts: int = 3
    rate_limit_default: float = 5.0
    backoff_max: float = 60.0
    report_dir: Path = field(default_factory=lambda: DATA_DIR / "scan-reports")

    @classmethod
    def from_env(cls) -> "ScanSettings":
        report_dir = os.getenv("SCAN_REPORT_DIR")
        return cls(
            page_size=int(_env_number("SCAN_PAGE_SIZE", 10, int, minimum=1)),
            fetch_delay=_env_number("SCAN_FETCH_DELAY", 1.0),
            process_delay=_env_number("SCAN_PROCESS_DELAY", 0.25),
            grant_delay=_env_number("SCAN_GRANT_DELAY", 1.0),
            progress_every=int(_env_number("SCAN_PROGRESS_EVERY", 2, int, minimum=1)),
            max_retry_attempts=int(_env_number("SCAN_MAX_RETRY_ATTEMPTS", 3, int, minimum=1)),
            rate_limit_default=_env_number("SCAN_RATE_LIMIT_DEFAULT", 5.0),
            backoff_max=_env_number("SCAN_BACKOFF_MAX", 60.0),
            report_dir=Path(report_dir) if report_dir else DATA_DIR / "scan-reports",
        )
