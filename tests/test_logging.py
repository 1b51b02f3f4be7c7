import json
import logging

from treasury.core.logging import JsonFormatter, RequestIdFilter, actor_ctx, request_id_ctx


def _record(**extra):
    record = logging.LogRecord(
        name="treasury.workflow",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg="expense %s: %s -> %s",
        args=("approve", "pendiente", "aprobado"),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_transition_fields_reach_json_output():
    record = _record(entity="expense", entity_id="e-1", action="approve", to_status="aprobado")
    RequestIdFilter().filter(record)
    body = json.loads(JsonFormatter().format(record))
    assert body["message"] == "expense approve: pendiente -> aprobado"
    assert body["entity_id"] == "e-1"
    assert body["to_status"] == "aprobado"
    assert body["request_id"] == "-"
    assert "from_status" not in body


def test_context_vars_are_attached():
    rid = request_id_ctx.set("req-42")
    actor = actor_ctx.set("aprob-1")
    try:
        record = _record()
        RequestIdFilter().filter(record)
    finally:
        actor_ctx.reset(actor)
        request_id_ctx.reset(rid)
    body = json.loads(JsonFormatter().format(record))
    assert body["request_id"] == "req-42"
    assert body["actor"] == "aprob-1"
