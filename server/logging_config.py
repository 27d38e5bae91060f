"""
Logging configuration with rotation and structured JSON logging.

Console output is human-readable; `affiliate_ledger.log` (everything) and
`errors.log` (ERROR and up) are rotating JSON files. Ledger events pass their
identifiers through `extra=` so they can be searched per affiliate, referral
or withdrawal.
"""

import logging
import logging.handlers
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from server.config import settings


# Attributes lifted from `extra=` into the JSON record
EXTRA_FIELDS = (
    "account_id",
    "affiliate_id",
    "referral_id",
    "withdrawal_id",
    "visit_id",
    "order_id",
    "amount",
    "status",
    "duration",
)

MAX_LOG_BYTES = 10 * 1024 * 1024
LOG_BACKUPS = 5

NOISY_LOGGERS = {
    "aiogram": logging.WARNING,
    "aiohttp.access": logging.WARNING,
    "asyncio": logging.WARNING,
    "sqlalchemy.engine": logging.WARNING,
    "apscheduler": logging.INFO,
}


class JSONFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record):
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        for field in EXTRA_FIELDS:
            if hasattr(record, field):
                log_data[field] = str(getattr(record, field))

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, ensure_ascii=False)


def _rotating_json_handler(path: Path, level: int) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(
        path,
        maxBytes=MAX_LOG_BYTES,
        backupCount=LOG_BACKUPS,
        encoding='utf-8'
    )
    handler.setLevel(level)
    handler.setFormatter(JSONFormatter())
    return handler


def setup_logging(log_dir: Optional[str] = None, level: Optional[str] = None):
    """
    Configure the root logger for the service.

    Args:
        log_dir: Directory for the JSON log files (settings.log_dir by default)
        level: Root level name (settings.log_level by default)
    """
    log_path = Path(log_dir or settings.log_dir)
    log_path.mkdir(parents=True, exist_ok=True)
    level_name = (level or settings.log_level).upper()

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level_name, logging.INFO))

    # Remove existing handlers to avoid duplicates
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.INFO)
    console_handler.setFormatter(logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    ))
    root_logger.addHandler(console_handler)

    root_logger.addHandler(_rotating_json_handler(log_path / "affiliate_ledger.log", logging.DEBUG))
    root_logger.addHandler(_rotating_json_handler(log_path / "errors.log", logging.ERROR))

    for name, noisy_level in NOISY_LOGGERS.items():
        logging.getLogger(name).setLevel(noisy_level)

    logging.info(f"Logging configured: level={level_name}, directory={log_path.absolute()}")
