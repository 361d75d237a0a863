"""Game-management REST API.

Every endpoint lives under ``<base_url>/game-management/`` and takes a bearer
token. Successful responses are enveloped as ``{"data": ..., "meta": ...}``;
failures carry ``{"status_code", "messages": [...], "timestamp", "path"}``.
All server messages are kept on :class:`ApiError` so the user sees every
reason the server gave, not just the first.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import IntEnum
from typing import Any

from sgv.core.result import Err, Ok, Result
from sgv.core.structured import as_obj_list, as_str_dict, get_bool, get_int, get_str
from sgv.services.release.errors import ReleaseError, ReleaseErrorKind
from sgv.services.release.model import BuildPlatform
from sgv.services.release.semver import VersionUpdateType
from sgv.tools.http import HttpClient, HttpError


class VersionState(IntEnum):
    PREPARATION = 1
    RELEASED = 2
    DEPRECATED = 3


class FileHost(IntEnum):
    S3 = 1


@dataclass(frozen=True, slots=True)
class ApiError:
    endpoint: str
    status: int
    messages: tuple[str, ...]

    @property
    def message(self) -> str:
        return "\n".join(self.messages) if self.messages else f"request to {self.endpoint} failed"

    def __str__(self) -> str:
        prefix = f"HTTP {self.status}" if self.status else "network error"
        return f"{prefix} on {self.endpoint}: {self.message}"

    def to_release_error(
        self,
        action: str,
        *,
        kind: ReleaseErrorKind | None = None,
    ) -> ReleaseError:
        resolved: ReleaseErrorKind = kind or ("network" if self.status == 0 else "remote_rejected")
        first = self.messages[0] if self.messages else f"request to {self.endpoint} failed"
        return ReleaseError(
            kind=resolved,
            message=f"{action}: {first}",
            details=self.messages[1:],
        )


@dataclass(frozen=True, slots=True)
class VersionDTO:
    semver: str
    state: int
    is_current: bool = False
    is_prerelease: bool = False

    @property
    def in_preparation(self) -> bool:
        return self.state == VersionState.PREPARATION

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> VersionDTO:
        return cls(
            semver=get_str(data, "semver") or "",
            state=get_int(data, "state") or 0,
            is_current=bool(get_bool(data, "is_current")),
            is_prerelease=bool(get_bool(data, "is_prerelease")),
        )


@dataclass(frozen=True, slots=True)
class PresignedUrl:
    url: str
    method: str = "PUT"
    content_type: str | None = None
    file_key: str | None = None
    bucket: str | None = None
    expires_at: str | None = None


@dataclass(frozen=True, slots=True)
class UploadTicket:
    upload_token: str
    signed_url: PresignedUrl


def _error_messages(error: HttpError) -> tuple[str, ...]:
    body = error.json_body()
    if body is not None:
        raw = as_obj_list(body.get("messages"))
        if raw:
            messages = tuple(str(m).strip() for m in raw if str(m).strip())
            if messages:
                return messages
        single = get_str(body, "message")
        if single:
            return (single,)
    return (error.message,) if error.message else ()


class GameManagementApi:
    """Bearer-authenticated JSON calls against the game-management API."""

    def __init__(self, http: HttpClient, *, base_url: str, token: str) -> None:
        self._http = http
        self._base = base_url.rstrip("/")
        self._token = token

    def url(self, endpoint: str) -> str:
        return f"{self._base}/game-management/{endpoint.lstrip('/')}"

    def call(
        self,
        method: str,
        endpoint: str,
        body: Mapping[str, object] | None = None,
    ) -> Result[Any, ApiError]:
        """Send a request and return the ``data`` member of the envelope."""
        name = endpoint.lstrip("/")
        result = self._http.request_json(
            method,
            self.url(name),
            body=body,
            headers={"Authorization": f"Bearer {self._token}"},
        )
        match result:
            case Err(e):
                return Err(ApiError(endpoint=name, status=e.status, messages=_error_messages(e)))
            case Ok(response):
                if response.data is None:
                    return Ok(None)
                if "data" in response.data:
                    return Ok(response.data["data"])
                return Ok(response.data)


class RemoteVersionClient:
    """Version lifecycle on the remote side."""

    def __init__(self, api: GameManagementApi) -> None:
        self._api = api

    def validate_token(self) -> Result[None, ApiError]:
        result = self._api.call("GET", "validate-token")
        if isinstance(result, Err):
            return result
        return Ok(None)

    def current_version(self) -> Result[VersionDTO | None, ApiError]:
        return self._version("version")

    def version_in_preparation(self) -> Result[VersionDTO | None, ApiError]:
        """The version being prepared, or None (404 counts as none)."""
        return self._version("version-in-preparation")

    def start_version(
        self,
        semver: str,
        *,
        update_type: VersionUpdateType = VersionUpdateType.SPECIFIC,
        is_prerelease: bool = False,
        release_notes: str | None = None,
    ) -> Result[VersionDTO, ApiError]:
        body: dict[str, object] = {
            "version_update_type": int(update_type),
            "specific_version": semver,
            "is_prerelease": is_prerelease,
        }
        if release_notes:
            body["release_notes"] = release_notes
        result = self._api.call("POST", "start-new-version", body)
        if isinstance(result, Err):
            return result
        data = as_str_dict(result.value)
        if data is None or not get_str(data, "semver"):
            return Ok(VersionDTO(semver=semver, state=VersionState.PREPARATION))
        return Ok(VersionDTO.from_dict(data))

    def cancel_preparation(self) -> Result[None, ApiError]:
        result = self._api.call("DELETE", "cancel-version-in-preparation")
        if isinstance(result, Err):
            return result
        return Ok(None)

    def end_version(self, semver: str) -> Result[None, ApiError]:
        result = self._api.call("POST", "end-version", {"semver": semver})
        if isinstance(result, Err):
            return result
        return Ok(None)

    def _version(self, endpoint: str) -> Result[VersionDTO | None, ApiError]:
        result = self._api.call("GET", endpoint)
        if isinstance(result, Err):
            if result.error.status == 404:
                return Ok(None)
            return result
        data = as_str_dict(result.value)
        if data is None or not get_str(data, "semver"):
            return Ok(None)
        return Ok(VersionDTO.from_dict(data))


class BuildUploadApi:
    """Start/confirm pair that brackets a presigned build upload."""

    def __init__(self, api: GameManagementApi) -> None:
        self._api = api

    def start(
        self,
        *,
        semver: str,
        platform: BuildPlatform,
        executable_name: str,
        filename: str,
        download_size: int,
        installed_size: int,
        host: FileHost = FileHost.S3,
        override_existing: bool = True,
    ) -> Result[UploadTicket, ApiError]:
        body: dict[str, object] = {
            "semver": semver,
            "platform": int(platform),
            "executable_name": executable_name,
            "filename": filename,
            "download_size": download_size,
            "installed_size": installed_size,
            "host": int(host),
            "override_existing": override_existing,
        }
        result = self._api.call("POST", "start-build-upload", body)
        if isinstance(result, Err):
            return result

        data = as_str_dict(result.value) or {}
        signed = as_str_dict(data.get("signed_url")) or {}
        url = get_str(signed, "url")
        token = get_str(data, "upload_token")
        if not url or not token:
            return Err(
                ApiError(
                    endpoint="start-build-upload",
                    status=200,
                    messages=("server response did not include a signed upload url",),
                )
            )
        return Ok(
            UploadTicket(
                upload_token=token,
                signed_url=PresignedUrl(
                    url=url,
                    method=get_str(signed, "method") or "PUT",
                    content_type=get_str(signed, "content_type"),
                    file_key=get_str(signed, "file_key"),
                    bucket=get_str(signed, "bucket"),
                    expires_at=get_str(signed, "expires_at"),
                ),
            )
        )

    def confirm(
        self,
        *,
        upload_token: str,
        semver: str,
        platform: BuildPlatform,
    ) -> Result[None, ApiError]:
        result = self._api.call(
            "POST",
            "confirm-build-upload",
            {"upload_token": upload_token, "semver": semver, "platform": int(platform)},
        )
        if isinstance(result, Err):
            return result
        return Ok(None)
