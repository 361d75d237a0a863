"""PUT of raw file bytes to a presigned object-storage URL."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from pathlib import Path

from sgv.core.result import Err, Ok, Result
from sgv.services.release.timeouts import (
    UPLOAD_RETRY_ATTEMPTS,
    UPLOAD_RETRY_BASE_SECONDS,
    UPLOAD_RETRY_MAX_SECONDS,
)
from sgv.tools.http import HttpClient, HttpError, TransferCancelled

ACL_HEADER = "x-amz-acl"

_CONTENT_TYPES = {
    ".zip": "application/zip",
    ".exe": "application/x-msdownload",
    ".dmg": "application/x-apple-diskimage",
    ".pkg": "application/x-newton-compatible-pkg",
    ".apk": "application/vnd.android.package-archive",
}

_TRANSIENT_BODY_MARKERS = ("requesttimeout", "slowdown", "internalerror", "serviceunavailable")


def content_type_for(path: Path) -> str:
    return _CONTENT_TYPES.get(path.suffix.lower(), "application/octet-stream")


def backoff_delay(attempt: int, *, base: float = UPLOAD_RETRY_BASE_SECONDS) -> float:
    """Delay after failed attempt ``attempt`` (1-based): ``min(base * 2**n, 30s)``."""
    return min(base * (2**attempt), UPLOAD_RETRY_MAX_SECONDS)


def is_transient(error: HttpError) -> bool:
    if error.status == 0 or error.status in (408, 429) or error.status >= 500:
        return True
    body = error.body.lower()
    return any(marker in body for marker in _TRANSIENT_BODY_MARKERS)


def is_acl_unsupported(error: HttpError) -> bool:
    return "accesscontrollistnotsupported" in error.body.lower()


@dataclass
class PresignedUploader:
    """Upload a file to a presigned URL with bounded retry.

    Transient failures (network, timeouts, throttling, 5xx) are retried with
    exponential backoff. A bucket that rejects ACLs gets one immediate retry
    without the ACL header. Anything else fails at once.
    """

    http: HttpClient
    max_attempts: int = UPLOAD_RETRY_ATTEMPTS
    backoff_base: float = UPLOAD_RETRY_BASE_SECONDS
    sleep: Callable[[float], None] | None = None

    def upload(
        self,
        url: str,
        path: Path,
        *,
        content_type: str | None = None,
        headers: Mapping[str, str] | None = None,
        progress: Callable[[int, int], None] | None = None,
        cancel: threading.Event | None = None,
    ) -> Result[None, HttpError]:
        """PUT ``path`` to ``url``.

        Raises:
            TransferCancelled: when ``cancel`` is set (mid-transfer or
                while waiting to retry).
        """
        send_headers = {"Content-Type": content_type or content_type_for(path)}
        send_headers.update(headers or {})

        acl_dropped = False
        attempt = 0
        last: HttpError | None = None
        while attempt < self.max_attempts:
            _check_cancel(cancel)
            attempt += 1
            result = self.http.put_file(
                url,
                path,
                send_headers,
                progress=progress,
                cancel=cancel,
            )
            if isinstance(result, Ok):
                if 200 <= result.value.status < 300:
                    return Ok(None)
                last = HttpError(
                    url=url,
                    status=result.value.status,
                    message="unexpected status",
                    body=result.value.text,
                )
            else:
                last = result.error

            if is_acl_unsupported(last) and not acl_dropped:
                acl_dropped = True
                send_headers = {k: v for k, v in send_headers.items() if k.lower() != ACL_HEADER}
                attempt -= 1
                continue

            if not is_transient(last) or attempt >= self.max_attempts:
                break
            self._wait(backoff_delay(attempt, base=self.backoff_base), cancel)

        assert last is not None
        return Err(last)

    def _wait(self, seconds: float, cancel: threading.Event | None) -> None:
        if self.sleep is not None:
            self.sleep(seconds)
            return
        if cancel is None:
            time.sleep(seconds)
            return
        if cancel.wait(seconds):
            raise TransferCancelled("upload cancelled")


def _check_cancel(cancel: threading.Event | None) -> None:
    if cancel is not None and cancel.is_set():
        raise TransferCancelled("upload cancelled")
