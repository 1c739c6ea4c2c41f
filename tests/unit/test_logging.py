import json
import logging

from flagservice.utils.logging import JsonFormatter


def test_json_formatter_includes_structured_fields():
    record = logging.LogRecord(
        name="flagservice.core.feature_management.service",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg="Feature '%s' set",
        args=("bookings-v3",),
        exc_info=None,
    )
    record.feature_slug = "bookings-v3"
    record.subject_kind = "user"
    record.enabled = True

    data = json.loads(JsonFormatter().format(record))

    assert data["message"] == "Feature 'bookings-v3' set"
    assert data["level"] == "INFO"
    assert data["feature_slug"] == "bookings-v3"
    assert data["subject_kind"] == "user"
    assert data["enabled"] is True
    assert "assigned_by" not in data
