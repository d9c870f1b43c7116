"""Tests for the HTTP execution gateway."""

import base64
from unittest.mock import patch

import pytest
import requests

from reqvault.crypto import encrypt_value
from reqvault.errors import TransportError
from reqvault.executor import ExecutionRequest, ExecutionResult, execute, execute_request
from reqvault.store import MemorySecretStore, VariableRecord
from tests.conftest import make_response


class TestMethodBodyPolicy:
    @patch("reqvault.executor.requests.request")
    def test_get_drops_body(self, mock_req):
        mock_req.return_value = make_response()
        execute_request("GET", "http://x.test", body='{"a": 1}')
        _, kwargs = mock_req.call_args
        assert "data" not in kwargs

    @pytest.mark.parametrize("method", ["post", "PUT", "PATCH"])
    @patch("reqvault.executor.requests.request")
    def test_payload_methods_send_body(self, mock_req, method):
        mock_req.return_value = make_response()
        execute_request(method, "http://x.test", body='{"a": "ü"}')
        _, kwargs = mock_req.call_args
        assert kwargs["method"] == method.upper()
        assert kwargs["data"] == '{"a": "ü"}'.encode()

    @pytest.mark.parametrize("method", ["DELETE", "HEAD", "OPTIONS"])
    @patch("reqvault.executor.requests.request")
    def test_other_methods_drop_body(self, mock_req, method):
        mock_req.return_value = make_response()
        execute_request(method, "http://x.test", body="payload")
        _, kwargs = mock_req.call_args
        assert "data" not in kwargs

    @patch("reqvault.executor.requests.request")
    def test_timeout_and_headers_passed(self, mock_req):
        mock_req.return_value = make_response()
        execute_request("GET", "http://x.test", headers={"A": "1"}, timeout=5)
        _, kwargs = mock_req.call_args
        assert kwargs["timeout"] == 5
        assert kwargs["headers"] == {"A": "1"}


class TestResponseShape:
    @patch("reqvault.executor.requests.request")
    def test_json_response(self, mock_req):
        mock_req.return_value = make_response(
            status_code=201,
            content=b'{"a":1}',
            headers={"Content-Type": "application/json", "X-Trace": "t1"},
            reason="Created",
        )
        result = execute_request("POST", "http://x.test", body="{}")
        assert result.error is None
        assert result.to_dict() == {
            "status": 201,
            "statusText": "Created",
            "headers": {"content-type": "application/json", "x-trace": "t1"},
            "body": {"a": 1},
            "bodyType": "json",
            "bodyText": '{"a":1}',
            "encoding": "utf8",
            "contentType": "application/json",
            "elapsedMs": result.elapsed_ms,
            "sizeBytes": 7,
        }
        assert isinstance(result.elapsed_ms, int)

    @patch("reqvault.executor.requests.request")
    def test_size_is_raw_byte_length(self, mock_req):
        raw = "héllo wörld".encode()
        mock_req.return_value = make_response(content=raw, headers={"Content-Type": "text/plain"})
        result = execute_request("GET", "http://x.test")
        assert result.size_bytes == len(raw)
        assert result.body == "héllo wörld"

    @patch("reqvault.executor.requests.request")
    def test_size_counts_decompressed_bytes(self, mock_req):
        payload = b"\x00\x01" * 64
        mock_req.return_value = make_response(
            content=payload,
            headers={"Content-Type": "application/octet-stream", "Content-Encoding": "gzip"},
        )
        result = execute_request("GET", "http://x.test")
        assert result.size_bytes == len(payload)
        assert base64.b64decode(result.body) == payload

    @patch("reqvault.executor.requests.request")
    def test_image_round_trips(self, mock_req):
        raw = bytes(range(256))
        mock_req.return_value = make_response(content=raw, headers={"Content-Type": "image/gif"})
        result = execute_request("GET", "http://x.test/pic")
        assert result.body_type == "image"
        assert base64.b64decode(result.body) == raw
        assert result.size_bytes == 256

    @patch("reqvault.executor.requests.request")
    def test_missing_content_type_reports_default(self, mock_req):
        mock_req.return_value = make_response(content=b"\x00\x01")
        result = execute_request("GET", "http://x.test")
        assert result.content_type == "application/octet-stream"
        assert result.body_type == "binary"

    @patch("reqvault.executor.requests.request")
    def test_content_type_reported_verbatim(self, mock_req):
        mock_req.return_value = make_response(
            content=b"not json",
            headers={"Content-Type": "application/json; charset=UTF-8"},
        )
        result = execute_request("GET", "http://x.test")
        assert result.content_type == "application/json; charset=UTF-8"
        assert result.body_type == "text"

    @patch("reqvault.executor.requests.request")
    def test_error_status_is_not_a_failure(self, mock_req):
        mock_req.return_value = make_response(status_code=500, reason="Internal Server Error")
        result = execute_request("GET", "http://x.test")
        assert result.error is None
        assert result.status_code == 500
        assert result.body == ""


class TestTransportFailures:
    @patch("reqvault.executor.requests.request")
    def test_timeout(self, mock_req):
        mock_req.side_effect = requests.exceptions.Timeout("slow")
        result = execute_request("GET", "http://x.test", timeout=3)
        assert result.error == "Request timed out after 3s"
        assert result.to_dict() == {
            "error": "Failed to execute request",
            "message": "Request timed out after 3s",
        }

    @patch("reqvault.executor.requests.request")
    def test_connection_error_not_retried(self, mock_req):
        mock_req.side_effect = requests.exceptions.ConnectionError("refused")
        result = execute_request("GET", "http://x.test")
        assert result.error.startswith("Connection error: refused")
        assert mock_req.call_count == 1

    @patch("reqvault.executor.requests.request")
    def test_invalid_url(self, mock_req):
        mock_req.side_effect = requests.exceptions.MissingSchema("No scheme supplied")
        result = execute_request("GET", "/relative")
        assert result.error.startswith("Request failed:")

    @patch("reqvault.executor.requests.request")
    def test_unexpected_error(self, mock_req):
        mock_req.side_effect = RuntimeError("kaboom")
        result = execute_request("GET", "http://x.test")
        assert result.error == "Unexpected error: kaboom"

    def test_fail_uses_exception_text_unless_overridden(self):
        result = ExecutionResult()
        result.fail(TransportError("refused"))
        assert result.error == "refused"
        result.fail(RuntimeError("x"), "Unexpected error: x")
        assert result.to_dict() == {"error": "Failed to execute request", "message": "Unexpected error: x"}


class TestExecute:
    @patch("reqvault.executor.requests.request")
    def test_substitutes_before_sending(self, mock_req, key):
        mock_req.return_value = make_response()
        store = MemorySecretStore(
            {
                "ws": [
                    VariableRecord("host", encrypt_value("api.test", key)),
                    VariableRecord("token", encrypt_value("abc", key), True),
                ],
            },
        )
        request = ExecutionRequest(
            method="POST",
            url="https://{{host}}/items",
            headers={"Authorization": "Bearer {{token}}"},
            body='{"owner": "{{ token }}"}',
            workspace_id="ws",
        )
        execute(request, store=store, key=key)
        _, kwargs = mock_req.call_args
        assert kwargs["url"] == "https://api.test/items"
        assert kwargs["headers"] == {"Authorization": "Bearer abc"}
        assert kwargs["data"] == b'{"owner": "abc"}'

    @patch("reqvault.executor.requests.request")
    def test_without_workspace_sends_as_is(self, mock_req):
        mock_req.return_value = make_response()
        execute(ExecutionRequest(method="GET", url="http://x.test/{{id}}"))
        _, kwargs = mock_req.call_args
        assert kwargs["url"] == "http://x.test/{{id}}"


class TestExecutionRequestFromDict:
    def test_camel_case_workspace(self):
        req = ExecutionRequest.from_dict(
            {"method": "post", "url": "http://x", "headers": {"A": "1"}, "workspaceId": "ws"},
        )
        assert req == ExecutionRequest("POST", "http://x", {"A": "1"}, None, "ws")

    def test_defaults(self):
        req = ExecutionRequest.from_dict({"url": "http://x"})
        assert req.method == "GET"
        assert req.headers == {}
