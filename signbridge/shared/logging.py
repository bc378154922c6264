"""
Structured logging for SignBridge.

Every record can carry the card and document it concerns, a short ``action``
tag and a ``data`` dict, passed through ``extra``::

    logger.info("Link written", extra={"card_id": card_id, "action": "link_written"})

Production (``APP_ENV=production``) emits one JSON object per line; anything
else gets a coloured single-line format for the terminal.
"""

import os
import sys
import json
import logging
from datetime import datetime, timezone
from typing import Any
from functools import lru_cache

from signbridge.shared.security import hash_pii

# Record attributes lifted from ``extra`` into the output.
CONTEXT_FIELDS = ("card_id", "document_id", "action")


def _context(record: logging.LogRecord) -> dict[str, Any]:
    return {
        name: getattr(record, name)
        for name in CONTEXT_FIELDS
        if getattr(record, name, None) is not None
    }


class JSONFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **_context(record),
        }
        data = getattr(record, "data", None)
        if data:
            entry["data"] = data
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str, ensure_ascii=False)


class PrettyFormatter(logging.Formatter):
    """Coloured single line for development."""

    LEVEL_COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[35m",
    }
    DIM = "\033[2m"
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelno, "")
        clock = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        line = f"{color}{clock} {record.levelname:<7}{self.RESET} {record.getMessage()}"

        tags = " ".join(f"{k}={v}" for k, v in _context(record).items())
        if tags:
            line += f" {self.DIM}[{tags}]{self.RESET}"

        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


class ContextLogger(logging.Logger):
    """Logger that never receives ``extra=None`` so formatters can rely on it."""

    def _log(self, level, msg, args, exc_info=None, extra=None, **kwargs):
        super()._log(level, msg, args, exc_info, extra or {}, **kwargs)


@lru_cache
def get_logger(name: str = "signbridge") -> ContextLogger:
    """Get a logger under the ``signbridge`` hierarchy with its handler attached."""

    logging.setLoggerClass(ContextLogger)
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    handler = logging.StreamHandler(sys.stdout)
    if os.environ.get("APP_ENV") == "production":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(PrettyFormatter())
    logger.addHandler(handler)

    level_name = os.environ.get("LOG_LEVEL", "INFO").upper()
    logger.setLevel(getattr(logging, level_name, logging.INFO))
    return logger


class AuditLogger:
    """
    Audit logger for actions with side effects on the external services.

    Records:
    - Which card was touched
    - What was written (document, link, phase)
    - Result (success/failure)
    """

    def __init__(self):
        self.logger = get_logger("signbridge.audit")

    def log_action(
        self,
        action: str,
        card_id: str | None,
        resource_type: str | None = None,
        resource_id: str | None = None,
        details: dict | None = None,
        result: str = "success",
    ):
        """Log an auditable action."""
        self.logger.info(
            f"AUDIT: {action}",
            extra={
                "action": action,
                "card_id": card_id,
                "data": {
                    "resource_type": resource_type,
                    "resource_id": resource_id,
                    "details": details or {},
                    "result": result,
                    "audit": True,
                },
            },
        )

    def log_document_created(self, card_id: str, document_id: str, signer_emails: list[str]):
        self.log_action(
            action="document_created",
            card_id=card_id,
            resource_type="document",
            resource_id=document_id,
            # Don't log PII
            details={"signers": [hash_pii(email) for email in signer_emails]},
        )

    def log_link_written(self, card_id: str, field_id: str, document_id: str):
        self.log_action(
            action="link_written",
            card_id=card_id,
            resource_type="field",
            resource_id=field_id,
            details={"document_id": document_id},
        )

    def log_card_moved(self, card_id: str, phase_id: str):
        self.log_action(
            action="card_moved",
            card_id=card_id,
            resource_type="phase",
            resource_id=phase_id,
        )

    def log_generation_failed(self, card_id: str, error_code: str, message: str):
        self.log_action(
            action="generation_failed",
            card_id=card_id,
            details={"error_code": error_code, "message": message},
            result="failure",
        )


audit = AuditLogger()
