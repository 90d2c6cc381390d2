"""Tests for the HTTP transport and status mapping

Run with pytest from project root:
    pytest tests/test_http_client.py -v
"""

from unittest.mock import MagicMock

import pytest
import requests

from http_client import (
    HttpResponse,
    HttpTransport,
    TransportError,
    error_for_response,
    extract_error_message,
    kind_for_status,
    message_for_response,
    sanitize_message,
)
from models.failure import FailureKind


class TestStatusMapping:
    """Tests for kind_for_status"""

    @pytest.mark.parametrize("status,kind", [
        (400, FailureKind.INVALID_INPUT),
        (401, FailureKind.NOT_CONNECTED),
        (403, FailureKind.NOT_CONNECTED),
        (404, FailureKind.MODEL_UNSUPPORTED),
        (408, FailureKind.PROVIDER_TIMEOUT),
        (504, FailureKind.PROVIDER_TIMEOUT),
        (429, FailureKind.RATE_LIMITED),
        (500, FailureKind.PROVIDER_ERROR),
        (502, FailureKind.PROVIDER_ERROR),
    ])
    def test_kind_for_status(self, status, kind):
        """Each upstream status maps onto one stable failure kind"""
        assert kind_for_status(status) is kind


class TestMessages:
    """Tests for error message extraction and sanitizing"""

    def test_sanitize_strips_markup_and_truncates(self):
        """Tags and control characters are removed, long text is cut"""
        text = "<b>Bad</b>\x00 request " + "x" * 400
        result = sanitize_message(text)
        assert "<b>" not in result
        assert "\x00" not in result
        assert len(result) <= 300
        assert result.endswith("...")

    def test_extract_nested_error_message(self):
        """OpenAI-style {"error": {"message": ...}} bodies are understood"""
        assert extract_error_message({"error": {"message": "Billing hard limit"}}) == "Billing hard limit"

    def test_extract_detail_list(self):
        """FastAPI-style validation lists yield their first message"""
        assert extract_error_message({"detail": [{"msg": "field required"}]}) == "field required"

    def test_extract_ignores_non_dict(self):
        assert extract_error_message(["nope"]) is None

    def test_message_for_response_with_body(self):
        response = HttpResponse(status=429, content=b'{"error": {"message": "Slow down"}}')
        assert message_for_response(response) == "HTTP 429: Slow down"

    def test_message_for_response_without_json(self):
        """Non-JSON bodies are never echoed back"""
        response = HttpResponse(status=502, content=b"<html>Bad gateway</html>")
        assert message_for_response(response) == "HTTP 502"

    def test_error_for_response(self):
        error = error_for_response(HttpResponse(status=401, content=b'{"message": "invalid key"}'))
        assert error.kind is FailureKind.NOT_CONNECTED
        assert "invalid key" in error.message


class TestHttpTransport:
    """Tests for HttpTransport with a mocked requests session"""

    def test_request_wraps_response(self):
        session = MagicMock()
        session.request.return_value = MagicMock(status_code=200, content=b"{}", headers={"Content-Type": "application/json"})
        transport = HttpTransport(session=session)

        response = transport.request("POST", "https://api.example.com/x", json={"a": 1}, timeout=5)

        assert response.ok
        assert response.json() == {}
        session.request.assert_called_once()
        assert session.request.call_args.kwargs["timeout"] == 5

    def test_timeout_maps_to_provider_timeout(self):
        session = MagicMock()
        session.request.side_effect = requests.Timeout("slow")
        transport = HttpTransport(session=session)

        with pytest.raises(TransportError) as exc_info:
            transport.get("https://api.example.com/x?key=secret")
        assert exc_info.value.kind is FailureKind.PROVIDER_TIMEOUT

    def test_connection_error_maps_to_provider_error(self):
        session = MagicMock()
        session.request.side_effect = requests.ConnectionError("refused")
        transport = HttpTransport(session=session)

        with pytest.raises(TransportError) as exc_info:
            transport.get("https://api.example.com/x")
        assert exc_info.value.kind is FailureKind.PROVIDER_ERROR
        assert "refused" in exc_info.value.message
