"""CLI logging configuration with file output.

Log files live under ``~/.local/share/lparlink/logs/``, one per command and
host::

    <command>_<host>.log   # e.g. exec_hmc01.log, table_hmc01.log
    <command>.log          # when no host is known

Usage from a CLI command::

    from lparlink.cli.logging import configure_cli_logging

    configure_cli_logging("exec", host="hmc01", verbose=verbose)

Protocol steps are logged at DEBUG, so the file is where a stalled copy or a
rejected channel shows up::

    rg "scp|channel" ~/.local/share/lparlink/logs/
"""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

LOG_DIR = Path.home() / ".local" / "share" / "lparlink" / "logs"


def get_log_dir() -> Path:
    """Return the CLI log directory, creating it if needed."""
    LOG_DIR.mkdir(parents=True, exist_ok=True)
    return LOG_DIR


def get_log_file(command: str, host: str | None = None) -> Path:
    """Return the log file path for a CLI command and remote host.

    Args:
        command: CLI command name (e.g., "exec", "table").
        host: Remote host name. Dots are kept; anything that is not a valid
            file name character is replaced with ``_``.
    """
    if host:
        safe_host = "".join(c if c.isalnum() or c in ".-" else "_" for c in host)
        stem = f"{command}_{safe_host}"
    else:
        stem = command
    return get_log_dir() / f"{stem}.log"


def configure_cli_logging(
    command: str,
    *,
    host: str | None = None,
    verbose: bool = False,
    console_level: int | None = None,
    file_level: int = logging.DEBUG,
    max_bytes: int = 5 * 1024 * 1024,  # 5 MB
    backup_count: int = 3,
) -> Path:
    """Configure logging for a CLI command with file output.

    Sets up:
    - File handler: DEBUG-level rotating log for the command and host
    - Console handler: WARNING, or INFO if verbose

    Args:
        command: CLI command name
        host: Remote host; splits the log file per host
        verbose: If True, set console to INFO level
        console_level: Override console level (takes precedence over verbose)
        file_level: File log level (default: DEBUG)
        max_bytes: Max size per log file before rotation
        backup_count: Number of rotated backups to keep

    Returns:
        Path to the log file
    """
    log_file = get_log_file(command, host=host)
    log_file.parent.mkdir(parents=True, exist_ok=True)

    package_logger = logging.getLogger("lparlink")

    # Remove existing file handlers to avoid duplicates on repeated calls
    for handler in package_logger.handlers[:]:
        if isinstance(handler, (RotatingFileHandler, logging.FileHandler)):
            package_logger.removeHandler(handler)
            handler.close()

    file_handler = RotatingFileHandler(
        log_file,
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
    )
    file_handler.setLevel(file_level)
    file_handler.setFormatter(
        logging.Formatter(
            "%(asctime)s %(levelname)-8s %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    package_logger.addHandler(file_handler)

    # NOTSET inherits WARNING from the root logger
    if package_logger.level == logging.NOTSET or package_logger.level > file_level:
        package_logger.setLevel(file_level)

    if console_level is None:
        console_level = logging.INFO if verbose else logging.WARNING
    logging.basicConfig(
        level=console_level,
        format="%(asctime)s - %(levelname)s - %(message)s",
        datefmt="%H:%M:%S",
    )

    return log_file
