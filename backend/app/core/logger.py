import logging
import sys
from pathlib import Path

from app.core.config import settings

# Attributes every LogRecord has; anything else came in through extra=
_RECORD_ATTRS = set(vars(logging.makeLogRecord({}))) | {"message", "asctime"}


class ContextFormatter(logging.Formatter):
    """Appends extra= context to the line as key=value pairs."""

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = {
            key: value
            for key, value in vars(record).items()
            if key not in _RECORD_ATTRS and not key.startswith("_")
        }
        if context:
            line += " " + " ".join(f"{key}={value}" for key, value in context.items())
        return line


class LoggerConfig:
    """Configuration for logger singleton"""

    def __init__(self):
        self.logger = logging.getLogger("bounty_messaging")
        if not self.logger.handlers:
            self._setup_logging()

    def _setup_logging(self):
        formatter = ContextFormatter(
            "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
        )

        console = logging.StreamHandler(sys.stdout)
        console.setFormatter(formatter)
        self.logger.addHandler(console)

        if settings.LOG_FILE:
            file_handler = logging.FileHandler(Path(settings.LOG_FILE))
            file_handler.setFormatter(formatter)
            self.logger.addHandler(file_handler)

        self.logger.setLevel(settings.LOG_LEVEL.upper())

    def get_logger(self):
        return self.logger


logger_config = LoggerConfig()
logger = logger_config.get_logger()
