"""Logging setup for the ledgersync CLI and embedding applications.

Levels, file output and rotation come from :class:`ledgersync.config.LoggingConfig`
(``LEDGERSYNC_LOGGING__*`` environment variables). Applications embedding the
engine may skip :func:`setup_logging` and configure the ``ledgersync`` logger
hierarchy themselves.
"""

import logging
import sys
from logging.handlers import RotatingFileHandler
from typing import Any

from ..config import LoggingConfig, get_logging_config

DETAILED_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
CLI_FORMAT = "%(message)s"

# Loggers of the HTTP stack; request lines are logged by the connector instead
NOISY_LOGGERS = ("urllib3", "requests", "charset_normalizer")


def _build_handlers(config: LoggingConfig, cli_mode: bool) -> list[logging.Handler]:
    # stdout carries command output
    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(logging.Formatter(CLI_FORMAT if cli_mode else DETAILED_FORMAT))
    handlers: list[logging.Handler] = [console]

    if config.log_to_file:
        config.log_file_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            config.log_file_path,
            maxBytes=config.max_file_size_mb * 1024 * 1024,
            backupCount=config.backup_count,
            encoding="utf-8",
        )
        file_handler.setFormatter(logging.Formatter(DETAILED_FORMAT))
        handlers.append(file_handler)

    return handlers


def setup_logging(
    config: LoggingConfig | None = None,
    cli_mode: bool = False,
    verbose: bool = False,
    force: bool = True,
) -> None:
    """Configure the root logger.

    Args:
        config: Logging settings. If None, loaded from the application settings.
        cli_mode: Print bare messages instead of timestamped records
        verbose: Log at DEBUG regardless of the configured level
        force: Replace handlers installed by an earlier call
    """
    if config is None:
        config = get_logging_config()

    level = logging.DEBUG if verbose else getattr(logging, config.level)

    logging.basicConfig(
        level=level,
        handlers=_build_handlers(config, cli_mode),
        force=force,
    )

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_log_config_summary() -> dict[str, Any]:
    """Describe the active logging setup, for diagnostics."""
    config = get_logging_config()
    root_logger = logging.getLogger()

    return {
        "level": logging.getLevelName(root_logger.level),
        "configured_level": config.level,
        "handlers": [type(h).__name__ for h in root_logger.handlers],
        "log_to_file": config.log_to_file,
        "log_file_path": str(config.log_file_path),
    }
