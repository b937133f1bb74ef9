import json
import logging
import sys

from stepwise.logging import JsonFormatter


def test_json_formatter_includes_extra_fields():
    record = logging.LogRecord(
        "stepwise.queue", logging.INFO, __file__, 1, "Job %s queued", ("j1",), None
    )
    record.workflow_id = "wf"
    payload = json.loads(JsonFormatter().format(record))

    assert payload["level"] == "INFO"
    assert payload["logger"] == "stepwise.queue"
    assert payload["message"] == "Job j1 queued"
    assert payload["extra"] == {"workflow_id": "wf"}


def test_json_formatter_serializes_exceptions():
    try:
        raise RuntimeError("boom")
    except RuntimeError:
        exc_info = sys.exc_info()
    record = logging.LogRecord("stepwise", logging.ERROR, __file__, 1, "failed", None, exc_info)
    payload = json.loads(JsonFormatter().format(record))
    assert "RuntimeError: boom" in payload["exception"]
    assert "extra" not in payload
