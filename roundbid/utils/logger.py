"""
Logging for roundbid.

Every module asks for `get_logger("<subsystem>")` and gets a child of the
"roundbid" logger (roundbid.clock, roundbid.ledger, roundbid.claims, ...).
Handlers live only on the parent: colored console output on stderr and,
when asked for, a plain-text file in the log directory.

Writes run on several threads (bids, the async sweeper's worker thread,
payment callbacks), so records carry the thread name.
"""

import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Dict, Optional, Union

import colorlog

if TYPE_CHECKING:
    from roundbid.core.config import EngineConfig

ROOT_LOGGER = "roundbid"
LOG_FILE = "roundbid.log"

CONSOLE_FORMAT = "%(log_color)s%(asctime)s %(levelname)-8s%(reset)s %(name)s [%(threadName)s] %(message)s"
FILE_FORMAT = "%(asctime)s %(levelname)-8s %(name)s [%(threadName)s] %(message)s"
DATE_FORMAT = "%H:%M:%S"

LEVEL_COLORS = {
    "DEBUG": "cyan",
    "INFO": "green",
    "WARNING": "yellow",
    "ERROR": "red",
    "CRITICAL": "red,bg_white",
}


class RoundbidLogger:
    """Owns the handlers of the roundbid logger tree"""

    _initialized = False
    _log_file: Optional[Path] = None

    @classmethod
    def setup(
        cls,
        level: int = logging.INFO,
        log_dir: Optional[str] = None,
        log_to_file: bool = False,
        subsystem_levels: Optional[Dict[str, int]] = None,
        force: bool = False,
    ):
        """
        Install the console (and optional file) handler.

        Args:
            level: Level of the roundbid logger and its handlers
            log_dir: Directory for roundbid.log. If None, uses ./logs
            log_to_file: Whether to also write plain-text records to a file
            subsystem_levels: Per-subsystem overrides, e.g. {"clock": logging.DEBUG}
            force: Replace handlers even if already configured (the CLI
                reconfigures on every invocation)
        """
        if cls._initialized and not force:
            return

        root = logging.getLogger(ROOT_LOGGER)
        root.setLevel(level)
        for handler in list(root.handlers):
            root.removeHandler(handler)
            handler.close()

        console = colorlog.StreamHandler(sys.stderr)
        console.setLevel(level)
        console.setFormatter(colorlog.ColoredFormatter(
            CONSOLE_FORMAT, datefmt=DATE_FORMAT, log_colors=LEVEL_COLORS,
        ))
        root.addHandler(console)

        cls._log_file = None
        if log_to_file:
            directory = Path(log_dir) if log_dir else Path("logs")
            directory.mkdir(exist_ok=True, parents=True)
            cls._log_file = directory / LOG_FILE
            file_handler = logging.FileHandler(cls._log_file)
            file_handler.setLevel(level)
            file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
            root.addHandler(file_handler)

        for subsystem, sub_level in (subsystem_levels or {}).items():
            logging.getLogger(f"{ROOT_LOGGER}.{subsystem}").setLevel(sub_level)

        cls._initialized = True

    @classmethod
    def log_file(cls) -> Optional[Path]:
        return cls._log_file

    @classmethod
    def get_logger(cls, name: str) -> logging.Logger:
        """
        Logger for one engine subsystem.

        Args:
            name: Subsystem name ('clock', 'ledger', 'claims', ...)
        """
        if not cls._initialized:
            cls.setup(level=logging.WARNING)
        return logging.getLogger(f"{ROOT_LOGGER}.{name}")


def parse_level(level: Union[int, str]) -> int:
    """Accept logging.INFO, "info" or "INFO"."""
    if isinstance(level, int):
        return level
    value = logging.getLevelName(level.strip().upper())
    if not isinstance(value, int):
        raise ValueError(f"Unknown log level: {level}")
    return value


def get_logger(name: str) -> logging.Logger:
    return RoundbidLogger.get_logger(name)


def setup_logging(
    level: Union[int, str] = logging.INFO,
    log_dir: Optional[str] = None,
    log_to_file: bool = False,
):
    """Reconfigure logging from scratch"""
    RoundbidLogger.setup(level=parse_level(level), log_dir=log_dir, log_to_file=log_to_file, force=True)


def setup_from_config(config: "EngineConfig", debug: bool = False):
    """Console level from `config.log_level`; --debug means DEBUG plus a log file."""
    if debug:
        setup_logging(logging.DEBUG, log_dir=str(config.log_dir), log_to_file=True)
    else:
        setup_logging(config.log_level)
