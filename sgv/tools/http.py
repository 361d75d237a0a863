"""HTTP client abstraction for the remote API and presigned storage.

This module provides:
- HttpClient: Protocol for HTTP operations (injectable for tests)
- RealHttpClient: Real implementation using urllib
- MockHttpClient: Scripted implementation for testing
"""

from __future__ import annotations

import http.client
import json
import ssl
import threading
import urllib.error
import urllib.request
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, BinaryIO, Protocol, cast, runtime_checkable

from sgv.core.result import Err, Ok, Result
from sgv.core.structured import as_str_dict

__all__ = [
    "HttpClient",
    "HttpError",
    "HttpResponse",
    "MockHttpClient",
    "RealHttpClient",
    "TransferCancelled",
]

_UPLOAD_CHUNK_SIZE = 256 * 1024


@dataclass(frozen=True, slots=True)
class HttpError:
    """HTTP error details.

    Attributes:
        url: The URL that failed
        status: HTTP status code (0 for network errors)
        message: Human-readable error message
        body: Raw response body, when the server sent one
    """

    url: str
    status: int
    message: str
    body: str = ""

    def __str__(self) -> str:
        if self.status:
            return f"HTTP {self.status}: {self.message} ({self.url})"
        return f"{self.message} ({self.url})"

    def json_body(self) -> dict[str, object] | None:
        """Parse ``body`` as a JSON object, or None."""
        if not self.body:
            return None
        try:
            return as_str_dict(json.loads(self.body))
        except (json.JSONDecodeError, ValueError):
            return None


@dataclass(frozen=True, slots=True)
class HttpResponse:
    status: int
    data: dict[str, Any] | None = None
    text: str = ""


class TransferCancelled(Exception):
    """Raised from inside a transfer when its cancel event is set."""


@runtime_checkable
class HttpClient(Protocol):
    """Protocol for HTTP operations.

    Lets tests inject scripted clients instead of touching the network.
    """

    def request_json(
        self,
        method: str,
        url: str,
        body: Mapping[str, object] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> Result[HttpResponse, HttpError]:
        """Send an optional JSON body and parse a JSON object response.

        Non-2xx responses come back as Err with ``body`` filled in.
        """
        ...

    def put_file(
        self,
        url: str,
        path: Path,
        headers: Mapping[str, str] | None = None,
        *,
        progress: Callable[[int, int], None] | None = None,
        cancel: threading.Event | None = None,
    ) -> Result[HttpResponse, HttpError]:
        """Stream a file as the raw PUT body.

        Raises:
            TransferCancelled: if ``cancel`` is set mid-transfer.
        """
        ...


class _ProgressReader:
    """File wrapper that reports bytes read and honours cancellation."""

    def __init__(
        self,
        handle: BinaryIO,
        total: int,
        progress: Callable[[int, int], None] | None,
        cancel: threading.Event | None,
    ) -> None:
        self._handle = handle
        self._total = total
        self._progress = progress
        self._cancel = cancel
        self._sent = 0

    def read(self, size: int = -1) -> bytes:
        if self._cancel is not None and self._cancel.is_set():
            raise TransferCancelled("upload cancelled")
        chunk = self._handle.read(_UPLOAD_CHUNK_SIZE if size < 0 else size)
        self._sent += len(chunk)
        if self._progress is not None and chunk:
            self._progress(self._sent, self._total)
        return chunk


class RealHttpClient:
    """Real HTTP client using urllib.

    Handles:
    - HTTPS with system certificates
    - JSON bodies and responses
    - Streaming PUT uploads with progress and cancellation
    - Timeout handling
    """

    def __init__(
        self,
        timeout: float = 30.0,
        upload_timeout: float = 30 * 60.0,
        user_agent: str = "sgv/0.3.0",
    ) -> None:
        self.timeout = timeout
        self.upload_timeout = upload_timeout
        self.user_agent = user_agent
        self._ssl_context = ssl.create_default_context()

    def _send(
        self,
        req: urllib.request.Request,
        *,
        timeout: float,
    ) -> Result[tuple[int, bytes], HttpError]:
        url = req.full_url
        try:
            with urllib.request.urlopen(req, timeout=timeout, context=self._ssl_context) as resp:
                return Ok((int(resp.status), resp.read()))
        except urllib.error.HTTPError as e:
            raw = e.read() if e.fp is not None else b""
            return Err(
                HttpError(
                    url=url,
                    status=e.code,
                    message=str(e.reason),
                    body=raw.decode("utf-8", errors="replace"),
                )
            )
        except urllib.error.URLError as e:
            return Err(HttpError(url=url, status=0, message=str(e.reason)))
        except http.client.HTTPException as e:
            return Err(HttpError(url=url, status=0, message=str(e) or type(e).__name__))
        except TimeoutError:
            return Err(HttpError(url=url, status=0, message="Request timed out"))
        except ValueError as e:
            return Err(HttpError(url=url, status=0, message=str(e)))
        except OSError as e:
            return Err(HttpError(url=url, status=0, message=str(e)))

    def request_json(
        self,
        method: str,
        url: str,
        body: Mapping[str, object] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> Result[HttpResponse, HttpError]:
        all_headers = {"User-Agent": self.user_agent, "Accept": "application/json"}
        all_headers.update(headers or {})
        data: bytes | None = None
        if body is not None:
            data = json.dumps(body).encode("utf-8")
            all_headers["Content-Type"] = "application/json"

        req = urllib.request.Request(url, data=data, headers=all_headers, method=method)
        result = self._send(req, timeout=self.timeout)
        if isinstance(result, Err):
            return result

        status, raw = result.value
        text = raw.decode("utf-8", errors="replace")
        if not text.strip():
            return Ok(HttpResponse(status=status, data=None, text=""))
        try:
            obj: object = json.loads(text)
        except json.JSONDecodeError as e:
            return Err(HttpError(url=url, status=status, message=f"JSON parse error: {e}", body=text))
        parsed = as_str_dict(obj)
        if parsed is None:
            return Err(HttpError(url=url, status=status, message="Expected JSON object", body=text))
        return Ok(HttpResponse(status=status, data=cast(dict[str, Any], parsed), text=text))

    def put_file(
        self,
        url: str,
        path: Path,
        headers: Mapping[str, str] | None = None,
        *,
        progress: Callable[[int, int], None] | None = None,
        cancel: threading.Event | None = None,
    ) -> Result[HttpResponse, HttpError]:
        try:
            total = path.stat().st_size
        except OSError as e:
            return Err(HttpError(url=url, status=0, message=f"cannot read {path}: {e}"))

        all_headers = {"User-Agent": self.user_agent, "Content-Length": str(total)}
        all_headers.update(headers or {})

        with path.open("rb") as handle:
            reader = _ProgressReader(handle, total, progress, cancel)
            req = urllib.request.Request(
                url,
                data=cast(Any, reader),
                headers=all_headers,
                method="PUT",
            )
            result = self._send(req, timeout=self.upload_timeout)

        if isinstance(result, Err):
            return result
        status, raw = result.value
        return Ok(HttpResponse(status=status, text=raw.decode("utf-8", errors="replace")))


@dataclass(frozen=True, slots=True)
class RecordedCall:
    method: str
    url: str
    body: Mapping[str, object] | None
    headers: Mapping[str, str]


def _empty_calls() -> list[RecordedCall]:
    return []


@dataclass
class MockHttpClient:
    """Scripted HTTP client for testing.

    Responses are queued per ``(method, url)``; the last queued response is
    repeated once the queue is down to one item.

    Usage:
        client = MockHttpClient()
        client.set_json("GET", "https://api/x", {"data": {}})
        client.set_error("PUT", "https://bucket/key", HttpError(..., status=503, ...))
    """

    calls: list[RecordedCall] = field(default_factory=_empty_calls)
    _responses: dict[tuple[str, str], list[HttpResponse | HttpError]] = field(
        default_factory=dict
    )
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def set_json(
        self,
        method: str,
        url: str,
        data: dict[str, Any] | None,
        *,
        status: int = 200,
    ) -> None:
        self._responses.setdefault((method, url), []).append(
            HttpResponse(status=status, data=data, text=json.dumps(data) if data else "")
        )

    def set_error(self, method: str, url: str, error: HttpError) -> None:
        self._responses.setdefault((method, url), []).append(error)

    def calls_to(self, method: str, url: str | None = None) -> list[RecordedCall]:
        return [c for c in self.calls if c.method == method and (url is None or c.url == url)]

    def _next(self, method: str, url: str) -> Result[HttpResponse, HttpError]:
        with self._lock:
            queue = self._responses.get((method, url))
            if not queue:
                return Err(HttpError(url=url, status=404, message="Not found (mock)"))
            response = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(response, HttpError):
            return Err(response)
        return Ok(response)

    def request_json(
        self,
        method: str,
        url: str,
        body: Mapping[str, object] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> Result[HttpResponse, HttpError]:
        with self._lock:
            self.calls.append(RecordedCall(method, url, body, dict(headers or {})))
        return self._next(method, url)

    def put_file(
        self,
        url: str,
        path: Path,
        headers: Mapping[str, str] | None = None,
        *,
        progress: Callable[[int, int], None] | None = None,
        cancel: threading.Event | None = None,
    ) -> Result[HttpResponse, HttpError]:
        with self._lock:
            self.calls.append(RecordedCall("PUT", url, None, dict(headers or {})))
        if cancel is not None and cancel.is_set():
            raise TransferCancelled("upload cancelled")
        size = path.stat().st_size
        if progress is not None:
            progress(size, size)
        return self._next("PUT", url)
