"""Trace logging of wire messages.

Every transport reports its messages through interceptors; TracingInterceptor
turns each one into a single JSON log record on the ``fastrange.tracing`` logger.
"""

from __future__ import annotations
import json
import logging

from .io.base import MessageDirection, RequestEvent

TRACE_LOGGER = "fastrange.tracing"

_DETAILS = {
    MessageDirection.OUTBOUND: "outboundMessageSent()",
    MessageDirection.INBOUND: "inboundMessageRead()",
    MessageDirection.COMPLETE: "inboundTrailers()",
}


def event_asdict(event: RequestEvent, *, api: str = "json") -> dict:
    """Return the JSON-serialisable form of an event."""
    payload = {
        "details": _DETAILS[event.direction],
        "elapsedmillis": round(event.elapsed_ms, 3),
        "requestinfo": {
            "api": api,
            "requestType": event.request_kind,
            "bucket": event.bucket,
            "objectName": event.object_name,
        },
    }
    if event.wire_size is not None:
        payload["optionalWireSize"] = event.wire_size
    return payload


class TracingInterceptor:
    """Logs one JSON record per outbound and inbound message."""

    def __init__(self, logger: logging.Logger | None = None, *, level: int = logging.INFO, api: str = "json"):
        self.logger = logger or logging.getLogger(TRACE_LOGGER)
        self.level = level
        self.api = api

    def __call__(self, event: RequestEvent) -> None:
        if self.logger.isEnabledFor(self.level):
            self.logger.log(self.level, json.dumps(event_asdict(event, api=self.api)))
