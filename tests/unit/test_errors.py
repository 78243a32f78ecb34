"""
Tests unitarios para la jerarquía de errores y el parseo estructurado de errores HTTP.
"""

import json

import pytest

from langbase_stream._errors import (
    AbortError,
    APIError,
    EmptyBodyError,
    LangbaseStreamError,
    MalformedPayloadError,
    StreamConsumedError,
    UpstreamError,
    parse_error_response,
)


@pytest.mark.parametrize(
    "error",
    [
        StreamConsumedError(),
        EmptyBodyError(),
        AbortError(),
        MalformedPayloadError(data="{"),
        UpstreamError(message="x"),
        APIError(status_code=500, message="boom"),
    ],
)
def test_all_errors_share_the_base_class(error):
    assert isinstance(error, LangbaseStreamError)
    assert isinstance(error, RuntimeError)


def test_consumed_error_points_to_tee():
    assert "use `.tee()`" in str(StreamConsumedError())


def test_abort_error_keeps_reason():
    err = AbortError("user cancelled")

    assert err.reason == "user cancelled"
    assert "user cancelled" in str(err)
    assert str(AbortError()) == "This operation was aborted"


class TestMalformedPayloadError:
    def test_str_includes_payload_and_reason(self):
        err = MalformedPayloadError(data="{oops", raw=["data: {oops"], reason="Expecting property name")

        assert "{oops" in str(err)
        assert "Expecting property name" in str(err)
        assert err.raw == ["data: {oops"]

    def test_raw_defaults_to_empty(self):
        assert MalformedPayloadError(data="x").raw == []


class TestUpstreamError:
    def test_str_is_the_upstream_message(self):
        assert str(UpstreamError(message="x")) == "x"

    def test_from_payload_with_string_error(self):
        err = UpstreamError.from_payload({"error": "x"})

        assert err.message == "x"
        assert err.event is None
        assert err.payload == {"error": "x"}

    def test_from_payload_with_error_object(self):
        err = UpstreamError.from_payload({"error": {"message": "rate limited", "code": 429}})

        assert err.message == "rate limited"

    def test_from_payload_with_error_object_without_message(self):
        err = UpstreamError.from_payload({"error": {"code": "E1"}})

        assert err.message == json.dumps({"code": "E1"})

    def test_from_payload_for_error_event(self):
        err = UpstreamError.from_payload({"message": "Something went wrong"}, event="error")

        assert err.message == "Something went wrong"
        assert err.event == "error"

    def test_from_payload_without_any_message(self):
        assert UpstreamError.from_payload([1, 2], event="error").message == "Unknown stream error"


class TestAPIError:
    """Tests para la clase APIError."""

    def test_error_creation_minimal(self):
        error = APIError(status_code=500, message="Internal error")

        assert error.status_code == 500
        assert error.message == "Internal error"
        assert error.body is None
        assert error.error_code is None
        assert error.request_id is None

    def test_str_with_code(self):
        error = APIError(status_code=403, message="Forbidden", error_code="FORBIDDEN", request_id="req_xyz")

        assert str(error) == "403 FORBIDDEN: Forbidden"
        assert error.request_id == "req_xyz"

    def test_str_without_code(self):
        error = APIError(status_code=500, message="Error", body="x" * 1000)

        assert str(error) == "500: Error"


class TestParseErrorResponse:
    """Tests para la función parse_error_response."""

    def test_parse_error_envelope(self):
        body = json.dumps({"error": {"code": "NOT_FOUND", "message": "Pipe not found"}})

        error = parse_error_response(404, body, "application/json", request_id="req_1")

        assert error.status_code == 404
        assert error.error_code == "NOT_FOUND"
        assert error.message == "Pipe not found"
        assert error.request_id == "req_1"
        assert error.body == body

    def test_parse_string_error(self):
        error = parse_error_response(401, json.dumps({"error": "Invalid API key"}), "application/json; charset=utf-8")

        assert error.message == "Invalid API key"
        assert error.error_code is None

    def test_parse_top_level_message(self):
        error = parse_error_response(500, json.dumps({"message": "Oh snap"}), "application/json")

        assert error.message == "Oh snap"

    def test_parse_non_json_content_type(self):
        error = parse_error_response(502, "Bad Gateway", "text/html")

        assert error.message == "Bad Gateway"
        assert error.error_code is None

    def test_parse_invalid_json_falls_back_to_body(self):
        error = parse_error_response(500, "{not json", "application/json")

        assert error.message == "{not json"

    def test_parse_non_dict_json(self):
        error = parse_error_response(500, json.dumps(["a"]), "application/json")

        assert error.message == "['a']"

    def test_parse_empty_body(self):
        error = parse_error_response(503, "", "application/json")

        assert error.message == "HTTP error"
