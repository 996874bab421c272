"""
Logging configuration for the ttn_data package.

Every module logs through `get_logger(<module>)`, which hangs below the
`ttn_data` logger; `setup_logging()` attaches one console handler there.
"""

import logging
import sys
from typing import Optional

ROOT_LOGGER = 'ttn_data'
NONE = 'NONE'

LEVELS = {
    'DEBUG': logging.DEBUG,
    'INFO': logging.INFO,
    'WARNING': logging.WARNING,
    'ERROR': logging.ERROR,
    'CRITICAL': logging.CRITICAL,
    NONE: logging.CRITICAL + 1,
}


class LoggingManager:
    """Manager for logging configuration."""

    _handler: Optional[logging.Handler] = None

    class ColoredFormatter(logging.Formatter):
        """Level names colored for terminals."""

        COLORS = {
            logging.DEBUG: '\033[36m',
            logging.INFO: '\033[32m',
            logging.WARNING: '\033[33m',
            logging.ERROR: '\033[31m',
            logging.CRITICAL: '\033[35m',
        }
        RESET = '\033[0m'

        def __init__(self, fmt=None, use_color=True):
            super().__init__(fmt)
            self.use_color = use_color

        def format(self, record):
            color = self.COLORS.get(record.levelno) if self.use_color else None
            if color:
                # Copy so other handlers still see the plain level name
                record = logging.makeLogRecord(record.__dict__)
                record.levelname = f"{color}{record.levelname}{self.RESET}"
            return super().format(record)

    @staticmethod
    def parse_level(level: str) -> int:
        """
        Translate a level name to a logging level.

        Raises:
            ValueError: For names outside DEBUG..CRITICAL and NONE
        """
        try:
            return LEVELS[level.strip().upper()]
        except KeyError:
            raise ValueError(f"Unknown log level: {level} (valid: {', '.join(LEVELS)})") from None

    @classmethod
    def setup(cls, level: str = 'WARNING', module_levels: Optional[dict[str, str]] = None,
              use_color: bool = True, show_time: bool = False):
        """
        Configure the package loggers.

        Calling it again replaces the handler installed by the previous call.

        Args:
            level: Default log level (DEBUG, INFO, WARNING, ERROR, CRITICAL, NONE)
            module_levels: Per-module overrides, e.g. {'router': 'DEBUG', 'subscriptions': 'INFO'}
            use_color: Color level names
            show_time: Prefix records with a timestamp
        """
        root_logger = logging.getLogger(ROOT_LOGGER)
        if cls._handler is not None:
            root_logger.removeHandler(cls._handler)
            cls._handler = None

        log_level = cls.parse_level(level)
        root_logger.setLevel(log_level)
        if log_level > logging.CRITICAL:
            return

        fmt = '%(levelname)s [%(name)s] %(message)s'
        if show_time:
            fmt = '%(asctime)s ' + fmt
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(cls.ColoredFormatter(fmt, use_color=use_color))
        root_logger.addHandler(handler)
        cls._handler = handler

        for module, mod_level in (module_levels or {}).items():
            cls.get_logger(module).setLevel(cls.parse_level(mod_level))

    @staticmethod
    def get_logger(name: str) -> logging.Logger:
        """
        Get logger for a module.

        Args:
            name: Module name (e.g., 'client', 'router')
        """
        return logging.getLogger(f'{ROOT_LOGGER}.{name}')


def setup_logging(level: str = 'WARNING', module_levels: Optional[dict[str, str]] = None,
                  use_color: bool = True, show_time: bool = False):
    """Shorthand for LoggingManager.setup()."""
    LoggingManager.setup(level, module_levels, use_color, show_time)


def get_logger(name: str) -> logging.Logger:
    return LoggingManager.get_logger(name)
