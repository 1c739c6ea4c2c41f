"""Structured logging setup."""

import json
import logging
import sys
from typing import Optional


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        data = {
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }
        # Structured fields emitted by the feature management core
        for attr in [
            "subject_kind",
            "subject_id",
            "feature_slug",
            "enabled",
            "assigned_by",
            "backend",
            "eligible_count",
            "error_code",
            "operation",
        ]:
            if hasattr(record, attr):
                data[attr] = getattr(record, attr)
        if record.exc_info:
            data["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(data, ensure_ascii=False)


def setup_logging(level: Optional[str] = None) -> None:
    root = logging.getLogger()
    root.setLevel((level or "INFO").upper())
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())
    root.handlers = [handler]
