import json
import logging
from datetime import date

from app.core.logging import JsonLogFormatter, bind_run_id, current_run_id


def _record(**extra) -> logging.LogRecord:
    record = logging.makeLogRecord({"name": "app.test", "levelname": "INFO", "msg": "Listing page queued"})
    record.__dict__.update(extra)
    return record


def test_extra_fields_are_serialized() -> None:
    line = JsonLogFormatter().format(_record(found_so_far=3, release=date(2024, 1, 1), keys={"imdb:tt1"}))
    payload = json.loads(line)

    assert payload["message"] == "Listing page queued"
    assert payload["found_so_far"] == 3
    assert payload["release"] == "2024-01-01"
    assert payload["keys"] == ["imdb:tt1"]
    assert "run_id" not in payload


def test_bound_run_id_is_attached_and_reset() -> None:
    with bind_run_id("abc123"):
        payload = json.loads(JsonLogFormatter().format(_record()))

    assert payload["run_id"] == "abc123"
    assert current_run_id() is None
