import logging
import logging.handlers
import os
import re
from datetime import datetime
from functools import lru_cache
from pathlib import Path

from app.config.settings import settings


class StampedRotatingFileHandler(logging.handlers.TimedRotatingFileHandler):
    """Midnight-rotating handler whose rotated files carry a timestamp suffix."""

    def rotation_filename(self, default_name):
        base, ext = os.path.splitext(self.baseFilename)
        return f"{base}-{datetime.now().strftime('%Y-%m-%d-%H-%M')}{ext}"

    def getFilesToDelete(self):
        """Return rotated files beyond `backupCount`, oldest first."""
        directory = os.path.dirname(self.baseFilename)
        stem, ext = os.path.splitext(os.path.basename(self.baseFilename))
        # Matches: <stem>-YYYY-MM-DD-HH-MM<ext>
        pattern = re.compile(
            rf"^{re.escape(stem)}-\d{{4}}-\d{{2}}-\d{{2}}-\d{{2}}-\d{{2}}{re.escape(ext)}$"
        )
        rotated = sorted(
            os.path.join(directory, name)
            for name in os.listdir(directory)
            if pattern.match(name)
        )
        if len(rotated) <= self.backupCount:
            return []
        return rotated[: len(rotated) - self.backupCount]


class AppLogger:
    """Process-wide logger with short method names."""

    __instance = None

    def __new__(cls):
        if cls.__instance is None:
            instance = super(AppLogger, cls).__new__(cls)
            instance._configure()
            cls.__instance = instance
        return cls.__instance

    def _configure(self) -> None:
        level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)
        self.logger = logging.getLogger(settings.SERVICE_NAME.upper())
        self.logger.setLevel(level)

        if self.logger.handlers:
            return

        log_dir = Path(settings.LOG_DIR)
        log_dir.mkdir(parents=True, exist_ok=True)
        log_path = log_dir / f"{settings.SERVICE_NAME}.log"

        file_handler = StampedRotatingFileHandler(
            log_path,
            when="midnight",
            interval=1,
            backupCount=settings.LOG_MAX_DAYS,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(
            logging.Formatter(
                "%(asctime)s - %(name)s - %(levelname)s - %(filename)s:%(lineno)d - %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )
        self.logger.addHandler(file_handler)

        if settings.LOG_TO_STDOUT:
            console_handler = logging.StreamHandler()
            console_handler.setLevel(level)
            console_handler.setFormatter(
                logging.Formatter(
                    "%(asctime)s - %(levelname)s - %(message)s", datefmt="%H:%M:%S"
                )
            )
            self.logger.addHandler(console_handler)

    def crit(self, msg: str, exc_info: bool = False) -> None:
        self.logger.critical(msg, exc_info=exc_info)

    def bug(self, msg: str, exc_info: bool = False) -> None:
        self.logger.debug(msg, exc_info=exc_info)

    def err(self, msg: str, exc_info: bool = False) -> None:
        self.logger.error(msg, exc_info=exc_info)

    def info(self, msg: str, exc_info: bool = False) -> None:
        self.logger.info(msg, exc_info=exc_info)

    def warn(self, msg: str, exc_info: bool = False) -> None:
        self.logger.warning(msg, exc_info=exc_info)

    def exception(self, exc: Exception, context: str = "") -> None:
        """Log an exception together with where it happened."""
        where = f" in {context}" if context else ""
        self.logger.error(
            f"Exception occurred{where}: {type(exc).__name__}: {exc}", exc_info=exc
        )

    def perf(self, operation: str, duration: float, **context) -> None:
        details = ", ".join(f"{k}={v}" for k, v in context.items())
        self.logger.info(f"Performance: {operation} took {duration:.3f}s ({details})")


@lru_cache()
def get_logger() -> AppLogger:
    return AppLogger()


log = get_logger()
