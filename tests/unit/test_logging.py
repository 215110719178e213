"""
Module: tests/unit/test_logging.py

What:
    Verify the JSON logger's record shape, context binding and redaction.

Why:
    Logs are the audit trail of a triage run and must never contain message
    subjects or bodies, including filter terms typed by the user.
"""

import io
import json

from mailsweep.utils.logging import REDACTED, get_logger


def _records(stream: io.StringIO):
    return [json.loads(line) for line in stream.getvalue().splitlines()]


def test_record_shape_and_binding():
    stream = io.StringIO()
    logger = get_logger("mailsweep.session", stream=stream).bind(session="s-1")
    logger.info("source_entered", index=2)
    logger.warning("stale_reference")
    first, second = _records(stream)
    assert first["msg"] == "source_entered"
    assert first["lvl"] == "INFO"
    assert first["component"] == "mailsweep.session"
    assert first["session"] == "s-1"
    assert first["index"] == 2
    assert second["lvl"] == "WARN"


def test_sensitive_fields_are_redacted_at_any_depth():
    """
    What:
        Subjects, bodies and content filter terms are masked recursively.
    """

    stream = io.StringIO()
    logger = get_logger("mailsweep.test", stream=stream)
    logger.info(
        "filter_changed",
        subject="Quarterly results",
        filter={"from_contains": "bob@x.org", "subject_contains": "salary", "body_contains": "secret"},
        rows=[{"body": "hello"}],
    )
    (record,) = _records(stream)
    assert record["subject"] == REDACTED
    assert record["filter"]["from_contains"] == "bob@x.org"
    assert record["filter"]["subject_contains"] == REDACTED
    assert record["filter"]["body_contains"] == REDACTED
    assert record["rows"] == [{"body": REDACTED}]
