"""Build and parse socketit wire frames.

Each transport frame carries exactly one JSON object::

    {"type": "request",  "id": "<token>", "method": "<name>", "data": <any>}
    {"type": "publish",  "method": "<name>", "data": <any>}
    {"type": "response", "ack": "<token>", "code": 200|404|500, "data": <any>}
"""

from __future__ import annotations

import json
from typing import Annotated, Any
from uuid import uuid4

from pydantic import Field, TypeAdapter, ValidationError

from .errors import ProtocolError
from .models import (
    Message,
    PublishMessage,
    RequestMessage,
    ResponseMessage,
    StatusCode,
)

_message_adapter: TypeAdapter[Message] = TypeAdapter(
    Annotated[Message, Field(discriminator="type")]
)

# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


def new_request_id() -> str:
    """Return a fresh 128-bit correlation token."""
    return uuid4().hex


def build_request(
    method: str,
    data: Any = None,
    *,
    request_id: str | None = None,
) -> str:
    """Serialise a request frame (expects a response)."""
    return RequestMessage(
        id=request_id or new_request_id(), method=method, data=data
    ).model_dump_json()


def build_publish(method: str, data: Any = None) -> str:
    """Serialise a publish frame (fire-and-forget, no id)."""
    return PublishMessage(method=method, data=data).model_dump_json()


def build_success(ack: str | int, data: Any = None) -> str:
    """Serialise a successful response."""
    return ResponseMessage(ack=ack, code=StatusCode.OK.value, data=data).model_dump_json()


def build_error(ack: str | int, code: int, message: str) -> str:
    """Serialise a failed response carrying ``{"message": ...}``."""
    return ResponseMessage(
        ack=ack, code=int(code), data={"message": message}
    ).model_dump_json()


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def parse_message(raw: str | bytes) -> Message:
    """Deserialise one frame into the matching message model.

    Raises :class:`ProtocolError` when the frame is not JSON, not an object,
    carries an unknown ``type`` or misses a required field.
    """
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ProtocolError(f"Frame is not valid JSON: {exc}", exc) from exc
    if not isinstance(data, dict):
        raise ProtocolError(f"Frame must be a JSON object, got {type(data).__name__}")
    try:
        return _message_adapter.validate_python(data)
    except ValidationError as exc:
        raise ProtocolError(f"Invalid message: {exc.error_count()} error(s)", exc) from exc
