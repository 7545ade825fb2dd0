"""
Tests for the upload client using an in-process httpx transport.
"""

import sys
import os
import json

import httpx
import pytest

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from facefit.api import StaticSession, UploadClient
from facefit.exceptions import NetworkError, ServerError, Unauthorized, ValidationError


DOCUMENT = {"average_measurements": {}, "total_samples": 0}


def _client(handler, token="secret-token"):
    return UploadClient(
        "https://api.example.test/",
        session=StaticSession(user_id=42, session_token=token),
        transport=httpx.MockTransport(handler)
    )


def test_successful_upload_request_shape() -> None:
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(201, json={"id": 1})

    with _client(handler) as client:
        client.upload(DOCUMENT, user_id=42)

    request = seen[0]
    assert request.method == "POST"
    assert str(request.url) == "https://api.example.test/users/42/facial_measurements_from_arkit"
    assert request.headers["Authorization"] == "Bearer secret-token"
    assert request.headers["Content-Type"] == "application/json"
    assert json.loads(request.content) == {"arkit_data": DOCUMENT}


def test_no_authorization_header_without_token() -> None:
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(201)

    with _client(handler, token=None) as client:
        client.upload(DOCUMENT, user_id=1)
    assert "Authorization" not in seen[0].headers


def test_200_is_not_success() -> None:
    with _client(lambda request: httpx.Response(200)) as client:
        with pytest.raises(ServerError) as exc_info:
            client.upload(DOCUMENT, user_id=1)
    assert exc_info.value.status_code == 200
    assert exc_info.value.retryable


def test_401_maps_to_unauthorized() -> None:
    with _client(lambda request: httpx.Response(401)) as client:
        with pytest.raises(Unauthorized):
            client.upload(DOCUMENT, user_id=1)


def test_422_maps_to_validation_messages() -> None:
    body = {"messages": ["height missing", "width missing"]}
    with _client(lambda request: httpx.Response(422, json=body)) as client:
        with pytest.raises(ValidationError) as exc_info:
            client.upload(DOCUMENT, user_id=1)
    assert exc_info.value.messages == ["height missing", "width missing"]
    assert str(exc_info.value) == "Validation error: height missing, width missing"


def test_422_without_body_uses_default_message() -> None:
    with _client(lambda request: httpx.Response(422, text="nope")) as client:
        with pytest.raises(ValidationError) as exc_info:
            client.upload(DOCUMENT, user_id=1)
    assert exc_info.value.messages == []
    assert str(exc_info.value) == "Validation error: Validation failed"


def test_500_maps_to_server_error() -> None:
    with _client(lambda request: httpx.Response(503)) as client:
        with pytest.raises(ServerError) as exc_info:
            client.upload(DOCUMENT, user_id=1)
    assert exc_info.value.status_code == 503


@pytest.mark.parametrize("error", [
    httpx.ConnectError("connection refused"),
    httpx.ReadTimeout("timed out"),
])
def test_transport_failures_map_to_network_error(error) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise error

    with _client(handler) as client:
        with pytest.raises(NetworkError) as exc_info:
            client.upload(DOCUMENT, user_id=1)
    assert exc_info.value.retryable
