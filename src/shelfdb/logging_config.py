"""
Logging

Loguru setup shared by the engine, the async facade and the CLI.

Environment:
    SHELFDB_MACHINE_MODE=1   no stderr sink (JSON output, tests)
    SHELFDB_FILE_LOGGING=1   also write <home>/logs/shelfdb.log
"""

import os
import sys

from loguru import logger

_configured = False

_TRUTHY = ("1", "true", "yes")

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>"
)


def _env_flag(name: str) -> bool:
    return os.getenv(name, "").lower() in _TRUTHY


def setup_logging(level="INFO", suppress_console=None, enable_file_logging=None, force=False):
    """
    Install the shelfdb log sinks.

    Args:
        level: Minimum level for the stderr sink
        suppress_console: Skip the stderr sink (None reads SHELFDB_MACHINE_MODE)
        enable_file_logging: Add the rotating file sink (None reads SHELFDB_FILE_LOGGING)
        force: Replace sinks installed by an earlier call
    """
    global _configured

    if _configured and not force:
        return
    _configured = True

    logger.remove()

    if suppress_console is None:
        suppress_console = _env_flag("SHELFDB_MACHINE_MODE")
    if not suppress_console:
        logger.add(sys.stderr, level=level, format=CONSOLE_FORMAT, colorize=True)

    if enable_file_logging is None:
        enable_file_logging = _env_flag("SHELFDB_FILE_LOGGING")
    if enable_file_logging:
        from shelfdb.paths import get_paths
        paths = get_paths()
        paths.ensure_dirs()

        logger.add(
            paths.logs_dir / "shelfdb.log",
            level="INFO",
            rotation="10 MB",
            retention="7 days",
            compression="gz",
            catch=True,
        )


setup_logging()
