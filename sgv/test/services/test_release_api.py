"""Tests for services/release/api.py."""

from __future__ import annotations

import json

import pytest

from sgv.core.result import Err, Ok
from sgv.services.release.api import (
    ApiError,
    BuildUploadApi,
    GameManagementApi,
    RemoteVersionClient,
    VersionDTO,
    VersionState,
)
from sgv.services.release.model import BuildPlatform
from sgv.tools.http import HttpError, MockHttpClient

BASE = "https://api.test/v1"


def _url(endpoint: str) -> str:
    return f"{BASE}/game-management/{endpoint}"


@pytest.fixture
def http() -> MockHttpClient:
    return MockHttpClient()


@pytest.fixture
def api(http: MockHttpClient) -> GameManagementApi:
    return GameManagementApi(http, base_url=BASE + "/", token="tok")


def _server_error(endpoint: str, status: int, messages: list[str]) -> HttpError:
    body = {"status_code": status, "messages": messages, "timestamp": "t", "path": endpoint}
    return HttpError(url=_url(endpoint), status=status, message=f"HTTP {status}", body=json.dumps(body))


# =============================================================================
# Envelope
# =============================================================================


class TestGameManagementApi:
    def test_unwraps_data(self, http: MockHttpClient, api: GameManagementApi) -> None:
        http.set_json("GET", _url("version"), {"data": {"semver": "1.0.0"}, "meta": {}})

        assert api.call("GET", "/version") == Ok({"semver": "1.0.0"})

    def test_sends_bearer_token(self, http: MockHttpClient, api: GameManagementApi) -> None:
        http.set_json("GET", _url("validate-token"), {"data": None})

        api.call("GET", "validate-token")

        call = http.calls_to("GET", _url("validate-token"))[0]
        assert call.headers["Authorization"] == "Bearer tok"

    def test_keeps_every_server_message(self, http: MockHttpClient, api: GameManagementApi) -> None:
        http.set_error(
            "POST",
            _url("start-new-version"),
            _server_error("start-new-version", 409, ["version exists", "pick another"]),
        )

        result = api.call("POST", "start-new-version", {})

        assert isinstance(result, Err)
        assert result.error == ApiError("start-new-version", 409, ("version exists", "pick another"))
        assert result.error.message == "version exists\npick another"

    def test_falls_back_to_transport_message(
        self, http: MockHttpClient, api: GameManagementApi
    ) -> None:
        http.set_error(
            "GET", _url("version"), HttpError(url=_url("version"), status=0, message="timed out")
        )

        result = api.call("GET", "version")

        assert isinstance(result, Err)
        assert result.error.messages == ("timed out",)


class TestApiError:
    def test_network_kind(self) -> None:
        error = ApiError("version", 0, ("connection refused",)).to_release_error("Failed")
        assert error.kind == "network"
        assert error.message == "Failed: connection refused"

    def test_rejected_kind_with_details(self) -> None:
        error = ApiError("x", 400, ("a", "b", "c")).to_release_error("Failed")
        assert error.kind == "remote_rejected"
        assert error.details == ("b", "c")

    def test_kind_override(self) -> None:
        error = ApiError("x", 401, ()).to_release_error("Token", kind="precondition_failed")
        assert error.kind == "precondition_failed"
        assert "request to x failed" in error.message


# =============================================================================
# Version lifecycle
# =============================================================================


class TestRemoteVersionClient:
    def test_version_in_preparation(self, http: MockHttpClient, api: GameManagementApi) -> None:
        http.set_json(
            "GET",
            _url("version-in-preparation"),
            {"data": {"semver": "1.3.0", "state": 1, "is_current": False}},
        )

        result = RemoteVersionClient(api).version_in_preparation()

        assert isinstance(result, Ok)
        assert result.value == VersionDTO(semver="1.3.0", state=VersionState.PREPARATION)
        assert result.value.in_preparation

    def test_404_means_none(self, api: GameManagementApi) -> None:
        assert RemoteVersionClient(api).version_in_preparation() == Ok(None)

    def test_other_errors_propagate(self, http: MockHttpClient, api: GameManagementApi) -> None:
        http.set_error("GET", _url("version"), _server_error("version", 500, ["boom"]))

        result = RemoteVersionClient(api).current_version()

        assert isinstance(result, Err)
        assert result.error.status == 500

    def test_start_version_body(self, http: MockHttpClient, api: GameManagementApi) -> None:
        http.set_json("POST", _url("start-new-version"), {"data": {"semver": "2.0.0", "state": 1}})

        result = RemoteVersionClient(api).start_version("2.0.0")

        assert isinstance(result, Ok)
        assert result.value.semver == "2.0.0"
        body = http.calls_to("POST", _url("start-new-version"))[0].body
        assert body == {"version_update_type": 4, "specific_version": "2.0.0", "is_prerelease": False}

    def test_start_version_without_echo(self, http: MockHttpClient, api: GameManagementApi) -> None:
        http.set_json("POST", _url("start-new-version"), {"data": None})

        result = RemoteVersionClient(api).start_version("2.0.0")

        assert result == Ok(VersionDTO(semver="2.0.0", state=VersionState.PREPARATION))

    def test_end_and_cancel(self, http: MockHttpClient, api: GameManagementApi) -> None:
        http.set_json("POST", _url("end-version"), {"data": None})
        http.set_json("DELETE", _url("cancel-version-in-preparation"), {"data": None})
        client = RemoteVersionClient(api)

        assert client.end_version("2.0.0") == Ok(None)
        assert client.cancel_preparation() == Ok(None)
        assert http.calls_to("POST", _url("end-version"))[0].body == {"semver": "2.0.0"}


# =============================================================================
# Build upload legs
# =============================================================================


class TestBuildUploadApi:
    def test_start(self, http: MockHttpClient, api: GameManagementApi) -> None:
        http.set_json(
            "POST",
            _url("start-build-upload"),
            {
                "data": {
                    "upload_token": "up-1",
                    "signed_url": {"url": "https://bucket/key", "content_type": "application/zip"},
                }
            },
        )

        result = BuildUploadApi(api).start(
            semver="1.0.0",
            platform=BuildPlatform.LINUX,
            executable_name="Game.x86_64",
            filename="Game.zip",
            download_size=10,
            installed_size=30,
        )

        assert isinstance(result, Ok)
        assert result.value.upload_token == "up-1"
        assert result.value.signed_url.url == "https://bucket/key"
        assert result.value.signed_url.method == "PUT"
        body = http.calls_to("POST", _url("start-build-upload"))[0].body
        assert body is not None
        assert body["platform"] == 3
        assert body["host"] == 1

    def test_start_without_url(self, http: MockHttpClient, api: GameManagementApi) -> None:
        http.set_json("POST", _url("start-build-upload"), {"data": {"upload_token": "t"}})

        result = BuildUploadApi(api).start(
            semver="1.0.0",
            platform=BuildPlatform.WINDOWS,
            executable_name="Game.exe",
            filename="Game.zip",
            download_size=1,
            installed_size=1,
        )

        assert isinstance(result, Err)
        assert "signed upload url" in result.error.message

    def test_confirm(self, http: MockHttpClient, api: GameManagementApi) -> None:
        http.set_json("POST", _url("confirm-build-upload"), {"data": None})

        result = BuildUploadApi(api).confirm(
            upload_token="up-1", semver="1.0.0", platform=BuildPlatform.WINDOWS
        )

        assert result == Ok(None)
        assert http.calls_to("POST", _url("confirm-build-upload"))[0].body == {
            "upload_token": "up-1",
            "semver": "1.0.0",
            "platform": 1,
        }
