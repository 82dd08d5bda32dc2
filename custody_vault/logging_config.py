"""
Structured Logging

Vault log lines are JSON objects. Besides the message, a line may carry the
vault, the account and the action it concerns plus an ``extra`` mapping of
amounts and error payloads; absent fields are omitted.
"""

import logging
import json
from datetime import datetime, timezone
from typing import Optional

# Record attributes copied into every JSON line when present
VAULT_FIELDS = ("vault_id", "account", "action", "resource", "extra")

TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class JSONFormatter(logging.Formatter):
    """One JSON object per record"""

    def format(self, record):
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for name in VAULT_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                entry[name] = value

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


def setup_logging(level: str = "INFO", log_format: str = "json",
                  logger_name: str = "custody_vault") -> logging.Logger:
    """
    Configure the package logger. Safe to call again; the previous handler
    is replaced.

    Args:
        level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        log_format: "json" or "text"
        logger_name: Logger to configure
    """
    logger = logging.getLogger(logger_name)
    logger.handlers.clear()

    handler = logging.StreamHandler()
    handler.setFormatter(JSONFormatter() if log_format == "json" else logging.Formatter(TEXT_FORMAT))

    logger.addHandler(handler)
    logger.setLevel(level.upper())
    logger.propagate = False
    return logger


def get_logger(name: str = "custody_vault") -> logging.Logger:
    return logging.getLogger(name)


def log_action(logger: logging.Logger, level: str, message: str,
               account: Optional[str] = None, action: Optional[str] = None,
               resource: Optional[str] = None, vault_id: Optional[str] = None,
               extra: Optional[dict] = None):
    """
    Emit one vault log line with its structured fields.

    Args:
        logger: Destination logger
        level: "debug", "info", "warning" or "error"
        message: Human readable summary
        account: Account the line is about
        action: Operation name, e.g. "deposit"
        resource: "vault:<id>"
        vault_id: Vault the operation ran against
        extra: Amounts, balances, error payloads
    """
    levelno = logging.getLevelName(level.upper())
    if not logger.isEnabledFor(levelno):
        return

    fields = {
        "account": account,
        "action": action,
        "resource": resource,
        "vault_id": vault_id,
        "extra": extra,
    }
    logger.log(levelno, message, extra={name: value for name, value in fields.items() if value})
