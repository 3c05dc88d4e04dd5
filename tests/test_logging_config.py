"""Structured logging formatters."""

import json
import logging

from piecetrack.middleware.logging_config import JSONFormatter, ReadableFormatter


def _record(**extra):
    record = logging.LogRecord("piecetrack.services.workflow_engine", logging.INFO, __file__, 10,
                               "Workflow %s moved", (42,), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_formatter_emits_domain_fields():
    payload = json.loads(JSONFormatter().format(
        _record(workflow_id=42, event_type="stage_transitioned", actor="alice")
    ))
    assert payload["message"] == "Workflow 42 moved"
    assert payload["level"] == "INFO"
    assert payload["workflow_id"] == 42
    assert payload["event_type"] == "stage_transitioned"
    assert payload["actor"] == "alice"
    assert "request_id" not in payload


def test_readable_formatter_includes_workflow():
    line = ReadableFormatter().format(_record(workflow_id=42, duration_ms=12.4))
    assert "wf=42" in line
    assert "Workflow 42 moved" in line
    assert "[12ms]" in line


def test_engine_logs_transitions(workflow, stages, caplog):
    from piecetrack.services import workflow_engine as engine

    with caplog.at_level(logging.INFO, logger="piecetrack.services.workflow_engine"):
        engine.transition_stage(workflow.id, stages[0].id, "alice")
    records = [r for r in caplog.records if getattr(r, "event_type", None) == "stage_transitioned"]
    assert len(records) == 1
    assert records[0].workflow_id == workflow.id
    assert records[0].actor == "alice"
