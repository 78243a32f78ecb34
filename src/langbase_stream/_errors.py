from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

CONSUMED_STREAM_MESSAGE = "Cannot iterate over a consumed stream, use `.tee()` to split the stream."


class LangbaseStreamError(RuntimeError):
    """Base error for the library."""


class StreamConsumedError(LangbaseStreamError):
    """Default iteration was requested twice on the same EventStream."""

    def __init__(self, message: str = CONSUMED_STREAM_MESSAGE) -> None:
        super().__init__(message)


class EmptyBodyError(LangbaseStreamError):
    """The response handed to an adapter has no readable body."""

    def __init__(self, message: str = "Attempted to iterate over a response with no body") -> None:
        super().__init__(message)


class AbortError(LangbaseStreamError):
    """The AbortController shared with the transport was triggered."""

    def __init__(self, reason: Any | None = None) -> None:
        super().__init__("This operation was aborted" if reason is None else f"Aborted: {reason}")
        self.reason = reason


@dataclass(slots=True)
class MalformedPayloadError(LangbaseStreamError):
    """
    A `data:` payload could not be parsed as JSON.

    Keeps the offending payload and every raw line of the SSE block so the
    failure can be traced back to the wire.
    """

    data: str
    raw: list[str] = field(default_factory=list)
    reason: str | None = None

    def __str__(self) -> str:
        msg = f"Could not parse message into JSON: {self.data!r}"
        if self.reason:
            msg += f" ({self.reason})"
        return msg


@dataclass(slots=True)
class UpstreamError(LangbaseStreamError):
    """
    The service reported an error inside the stream.

    Raised for an SSE block whose event is `error` or for any payload that
    carries a top-level `error` field.
    """

    message: str
    event: str | None = None
    payload: Any | None = None

    def __str__(self) -> str:
        return self.message

    @staticmethod
    def from_payload(payload: Any, event: str | None = None) -> UpstreamError:
        err = payload.get("error") if isinstance(payload, dict) else None
        if isinstance(err, dict):
            msg = err.get("message")
            message = msg if isinstance(msg, str) else json.dumps(err)
        elif err:
            message = str(err)
        elif isinstance(payload, dict) and isinstance(payload.get("message"), str):
            message = payload["message"]
        else:
            message = "Unknown stream error"
        return UpstreamError(message=message, event=event, payload=payload)


@dataclass(slots=True)
class APIError(LangbaseStreamError):
    """
    HTTP error for a streaming response that never reached the decoder.

    When the backend returns a JSON error with the shape:
    {
        "error": {
            "code": "NOT_FOUND" | "UNAUTHORIZED" | ...,
            "message": "..."
        }
    }

    the structured fields are parsed to make debugging easier.
    """

    status_code: int
    message: str
    body: str | None = None
    error_code: str | None = None
    request_id: str | None = None

    def __str__(self) -> str:
        if self.error_code:
            return f"{self.status_code} {self.error_code}: {self.message}"
        return f"{self.status_code}: {self.message}"


def parse_error_response(
    status_code: int,
    body_text: str,
    content_type: str,
    request_id: str | None = None,
) -> APIError:
    """
    Build an APIError from a failed response.

    If the body is not JSON or does not match the error envelope, the
    structured fields stay None and the raw body becomes the message.
    """
    message = "HTTP error"
    error_code: str | None = None

    if "application/json" not in content_type.lower():
        if body_text and body_text.strip():
            message = body_text
        return APIError(status_code=status_code, message=message, body=body_text, request_id=request_id)

    try:
        data = json.loads(body_text) if body_text else {}
    except ValueError:
        if body_text and body_text.strip():
            message = body_text
        return APIError(status_code=status_code, message=message, body=body_text, request_id=request_id)

    if not isinstance(data, dict):
        return APIError(
            status_code=status_code,
            message=str(data) if data else message,
            body=body_text,
            request_id=request_id,
        )

    error_obj = data.get("error")
    if isinstance(error_obj, dict):
        code = error_obj.get("code")
        if isinstance(code, str) and code.strip():
            error_code = code.strip()
        msg = error_obj.get("message")
        if isinstance(msg, str) and msg.strip():
            message = msg.strip()
    elif isinstance(error_obj, str) and error_obj.strip():
        message = error_obj.strip()
    else:
        msg = data.get("message")
        if isinstance(msg, str) and msg.strip():
            message = msg.strip()

    return APIError(
        status_code=status_code,
        message=message,
        body=body_text,
        error_code=error_code,
        request_id=request_id,
    )
