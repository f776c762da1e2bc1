"""Pydantic models for the three socketit wire frames."""

from __future__ import annotations

from enum import IntEnum
from typing import Any, Literal

from pydantic import BaseModel


class StatusCode(IntEnum):
    """Response codes carried in the ``code`` field of a response frame."""

    OK = 200
    NOT_FOUND = 404
    HANDLER_ERROR = 500


class RequestMessage(BaseModel):
    """A call that expects exactly one response with a matching ``ack``."""

    type: Literal["request"] = "request"
    id: str | int
    method: str
    data: Any = None


class PublishMessage(BaseModel):
    """Fire-and-forget call; the peer never answers it."""

    type: Literal["publish"] = "publish"
    method: str
    data: Any = None


class ResponseMessage(BaseModel):
    """Answer to a request.  ``data`` is ``{"message": ...}`` on failure."""

    type: Literal["response"] = "response"
    ack: str | int
    code: int
    data: Any = None

    @property
    def ok(self) -> bool:
        return self.code == StatusCode.OK

    @property
    def error_message(self) -> str:
        if isinstance(self.data, dict) and self.data.get("message"):
            return str(self.data["message"])
        return "Error"


Message = RequestMessage | PublishMessage | ResponseMessage
