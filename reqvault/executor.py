"""reqvault executor - HTTP request execution."""

import logging
import time
from dataclasses import dataclass, field
from typing import Any

import requests

from reqvault.encoder import DEFAULT_CONTENT_TYPE, ENCODING_UTF8, encode_body
from reqvault.errors import TransportError
from reqvault.store import SecretStore
from reqvault.substitution import substitute_request

logger = logging.getLogger(__name__)

# Only these methods carry a request body; it is dropped for everything else.
PAYLOAD_METHODS = ("POST", "PUT", "PATCH")

DEFAULT_TIMEOUT = 30

EXECUTION_FAILED = "Failed to execute request"


@dataclass
class ExecutionRequest:
    """A draft request as submitted by the caller."""

    method: str
    url: str
    headers: dict[str, str] = field(default_factory=dict)
    body: str | None = None
    workspace_id: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ExecutionRequest":
        return cls(
            method=str(data.get("method") or "GET").upper(),
            url=str(data.get("url") or ""),
            headers=dict(data.get("headers") or {}),
            body=data.get("body"),
            workspace_id=data.get("workspaceId") or data.get("workspace_id"),
        )


class ExecutionResult:
    """Result of an HTTP request."""

    def __init__(self):
        self.status_code: int = 0
        self.status_text: str = ""
        self.headers: dict[str, str] = {}
        self.body: Any = None  # parsed JSON, text, or base64 string
        self.body_type: str = "text"
        self.body_text: str | None = None
        self.encoding: str = ENCODING_UTF8
        self.content_type: str = DEFAULT_CONTENT_TYPE
        self.elapsed_ms: int = 0
        self.size_bytes: int = 0
        self.error: str | None = None

    def fail(self, exc: Exception, message: str | None = None) -> None:
        self.error = message or str(exc)

    def to_dict(self) -> dict[str, Any]:
        """Serialize as the execution response, or {error, message} on failure."""
        if self.error:
            return {"error": EXECUTION_FAILED, "message": self.error}
        data: dict[str, Any] = {
            "status": self.status_code,
            "statusText": self.status_text,
            "headers": self.headers,
            "body": self.body,
            "bodyType": self.body_type,
            "encoding": self.encoding,
            "contentType": self.content_type,
            "elapsedMs": self.elapsed_ms,
            "sizeBytes": self.size_bytes,
        }
        if self.body_text is not None:
            data["bodyText"] = self.body_text
        return data


def execute_request(
    method: str,
    url: str,
    headers: dict[str, str] | None = None,
    body: str | None = None,
    timeout: int = DEFAULT_TIMEOUT,
) -> ExecutionResult:
    """Execute one HTTP request and return a structured result.

    - Sends the body only for POST/PUT/PATCH
    - Reads the whole body, timing from send to last byte
    - gzip/deflate transfer encodings are undone by requests, so size_bytes
      and a base64 body describe the decompressed payload. No text decoding
      happens before the size is taken.
    - Classifies the body via the encoder
    - Never raises - transport failures set the error field
    - No retries: one call, one attempt
    """
    result = ExecutionResult()
    method = method.upper()

    try:
        kwargs: dict[str, Any] = {
            "method": method,
            "url": url,
            "headers": headers or {},
            "timeout": timeout,
            "allow_redirects": True,
        }
        if body and method in PAYLOAD_METHODS:
            kwargs["data"] = body.encode("utf-8")

        start = time.monotonic()
        resp = requests.request(**kwargs)
        raw = resp.content
        result.elapsed_ms = int((time.monotonic() - start) * 1000)

        result.status_code = resp.status_code
        result.status_text = resp.reason or ""
        result.headers = {k.lower(): v for k, v in resp.headers.items()}
        result.size_bytes = len(raw)

        declared = resp.headers.get("Content-Type")
        result.content_type = declared or DEFAULT_CONTENT_TYPE

        encoded = encode_body(raw, declared, result.headers)
        result.body_type = encoded.body_type
        result.body = encoded.body
        result.body_text = encoded.body_text
        result.encoding = encoded.encoding

    except requests.exceptions.Timeout:
        result.fail(TransportError(f"Request timed out after {timeout}s"))
    except requests.exceptions.ConnectionError as e:
        result.fail(TransportError(f"Connection error: {e}"))
    except requests.exceptions.RequestException as e:
        result.fail(TransportError(f"Request failed: {e}"))
    except Exception as e:
        logger.exception("Unexpected error executing %s %s", method, url)
        result.fail(e, f"Unexpected error: {e}")

    if result.error:
        logger.warning("%s %s failed: %s", method, url, result.error)
    return result


def execute(
    request: ExecutionRequest,
    store: SecretStore | None = None,
    timeout: int = DEFAULT_TIMEOUT,
    key: bytes | None = None,
) -> ExecutionResult:
    """Substitute workspace variables into request, then execute it."""
    prepared = substitute_request(request, request.workspace_id, store, key)
    return execute_request(
        method=prepared.method,
        url=prepared.url,
        headers=prepared.headers,
        body=prepared.body,
        timeout=timeout,
    )
