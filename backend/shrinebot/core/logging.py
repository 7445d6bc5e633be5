"""Logging configuration"""

import logging
import os
import sys

from rich.console import Console
from rich.logging import RichHandler

PLAIN_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Libraries whose INFO output drowns the scan logs
NOISY_LOGGERS = ("discord", "discord.http", "discord.gateway", "asyncpg", "aiohttp")


def setup_logging(level_name: str | None = None) -> None:
    """Configure application logging with a Rich handler."""
    level_name = level_name or os.getenv("LOG_LEVEL", "INFO")
    level = getattr(logging, level_name.upper(), logging.INFO)

    try:
        if sys.platform == "win32":
            import codecs

            sys.stdout = codecs.getwriter("utf-8")(sys.stdout.buffer, errors="replace")
            sys.stderr = codecs.getwriter("utf-8")(sys.stderr.buffer, errors="replace")

        rich_handler = RichHandler(
            console=Console(force_terminal=True, width=120),
            show_time=True,
            show_level=True,
            show_path=False,
            markup=False,
            rich_tracebacks=True,
            tracebacks_show_locals=False,
            tracebacks_width=120,
        )
        rich_handler.setFormatter(logging.Formatter(fmt="%(message)s", datefmt="[%Y-%m-%d %H:%M:%S]"))
        logging.basicConfig(level=level, handlers=[rich_handler], force=True)
    except Exception as e:
        logging.basicConfig(level=level, format=PLAIN_FORMAT, datefmt="%Y-%m-%d %H:%M:%S", force=True)
        logging.getLogger(__name__).warning(f"Rich logging setup failed: {e}, using standard logging")

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
