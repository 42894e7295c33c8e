"""
Operation outcome logging.

Every guarded operation reports its outcome here once. Records go through
the standard logging tree with the audit fields attached as ``extra``, so
any handler can render them; JsonLinesFormatter writes them as one JSON
object per line.
"""

import json
import logging
import logging.handlers
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping, Optional

from workspace_tools.filesystem.exceptions import FileSystemError
from workspace_tools.settings.config import LoggingConfig

logger = logging.getLogger(__name__)

SENSITIVE_KEYS = ("password", "token", "secret", "apikey", "api_key", "auth", "key")
REDACTED = "[REDACTED]"

AUDIT_FIELDS = ("agent", "operation", "params", "success", "duration_ms", "error", "error_type")

LOG_FILE_NAME = "workspace-tools.log"


def sanitize_params(params: Mapping[str, Any]) -> dict[str, Any]:
    """Redact values whose key looks sensitive, recursing into mappings."""
    sanitized: dict[str, Any] = {}
    for key, value in params.items():
        if any(sensitive in str(key).lower() for sensitive in SENSITIVE_KEYS):
            sanitized[key] = REDACTED
        elif isinstance(value, Mapping):
            sanitized[key] = sanitize_params(value)
        else:
            sanitized[key] = value
    return sanitized


class OperationLogger:
    """
    Emits one structured record per operation outcome.

    Successes log at INFO. Expected failures (policy, input, conflict)
    log at WARNING and unexpected ones at ERROR.
    """

    def __init__(self, name: str = __name__):
        self._logger = logging.getLogger(name)

    def log(
        self,
        agent: Optional[str],
        operation: str,
        params: Mapping[str, Any],
        success: bool,
        duration_ms: float,
        error: Optional[BaseException] = None,
    ) -> None:
        fields = {
            "agent": agent or "unknown",
            "operation": operation,
            "params": sanitize_params(params),
            "success": success,
            "duration_ms": round(duration_ms, 3),
            "error": str(error) if error is not None else None,
            "error_type": type(error).__name__ if error is not None else None,
        }

        if success:
            self._logger.info(
                f"{operation} by {fields['agent']} succeeded in {fields['duration_ms']}ms",
                extra=fields,
            )
        elif isinstance(error, (FileSystemError, OSError)):
            self._logger.warning(f"{operation} by {fields['agent']} failed: {error}", extra=fields)
        else:
            self._logger.error(f"{operation} by {fields['agent']} failed: {error}", extra=fields)


class JsonLinesFormatter(logging.Formatter):
    """Render records as single-line JSON including any audit fields."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for field in AUDIT_FIELDS:
            if hasattr(record, field):
                entry[field] = getattr(record, field)
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def create_file_handler(config: LoggingConfig) -> Optional[logging.Handler]:
    """
    Build a daily-rotating JSON-lines handler for config.log_dir.

    Returns:
        The handler, or None when no log directory is configured
    """
    if config.log_dir is None:
        return None

    log_dir = Path(config.log_dir).expanduser()
    log_dir.mkdir(parents=True, exist_ok=True)

    handler = logging.handlers.TimedRotatingFileHandler(
        log_dir / LOG_FILE_NAME,
        when="midnight",
        backupCount=config.retention_days,
        encoding="utf-8",
        utc=True,
    )
    handler.setFormatter(JsonLinesFormatter())
    handler.setLevel(log_level(config))
    return handler


def log_level(config: LoggingConfig) -> int:
    return logging.WARNING if config.level == "WARN" else getattr(logging, config.level)
