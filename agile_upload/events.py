import json
import logging

from opentelemetry import trace

from agile_upload.errors import EndpointError

event_logger = logging.getLogger("agile.client")
if not event_logger.handlers:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(message)s"))
    event_logger.addHandler(handler)
event_logger.setLevel(logging.INFO)


def _trace_id() -> str | None:
    span_context = trace.get_current_span().get_span_context()
    if not span_context or not span_context.is_valid:
        return None
    return format(span_context.trace_id, "032x")


def log_event(payload: dict, level: int = logging.INFO) -> None:
    payload.setdefault("trace_id", _trace_id())
    event_logger.log(level, json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str))


def log_error(exc: EndpointError) -> EndpointError:
    log_event(
        {
            "event": "endpoint_error",
            "error_class": exc.error_class,
            "detail": exc.detail,
            "query": exc.query,
            "response": exc.response,
        },
        level=logging.ERROR,
    )
    return exc
