from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import List

import httpx
import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from d2lsync.config import SyncSettings
from d2lsync.directory import (
    USERS_PATH,
    DirectoryClient,
    SerializationError,
    TransportError,
    UnexpectedStatusError,
    create_payload,
    update_payload,
)
from d2lsync.models import Role, UserRecord
from d2lsync.signing import RequestSigner


SETTINGS = SyncSettings(
    app_id="app-id",
    app_key=b"app-key",
    user_id="usr-id",
    user_key=b"usr-key",
    uri_base="https://lms.example.edu",
)

RECORD = UserRecord(
    first_name="John",
    middle_name="",
    last_name="Doe",
    user_name="j_d1",
    org_defined_id="A00000000",
    external_email="jdoe@example.edu",
)

READ_BODY = {
    "FirstName": "John",
    "MiddleName": "",
    "LastName": "Doe",
    "UserName": "j_d1",
    "OrgDefinedId": "A00000000",
    "ExternalEmail": "jdoe@example.edu",
    "OrgId": 6606,
    "UserId": 100,
    "Activation": {"IsActive": True},
    "DisplayName": "John Doe",
    "UniqueIdentifier": "j_d1@example.edu",
}


def _client(handler) -> DirectoryClient:
    return DirectoryClient(
        SETTINGS,
        signer=RequestSigner(SETTINGS, clock=lambda: 1_500_000_000),
        client=httpx.Client(transport=httpx.MockTransport(handler)),
    )


def test_read_user_parses_response() -> None:
    seen: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=READ_BODY)

    remote = _client(handler).read_user("j_d1")

    assert remote is not None
    assert remote.user_id == 100
    assert remote.is_active is True
    assert remote.record == RECORD

    request = seen[0]
    assert request.method == "GET"
    assert request.url.path == USERS_PATH
    assert request.url.params["userName"] == "j_d1"
    for key in ("x_a", "x_b", "x_c", "x_d", "x_t"):
        assert key in request.url.params
    assert request.url.params["x_t"] == "1500000000"


def test_read_user_normalises_null_middle_name() -> None:
    body = dict(READ_BODY, MiddleName=None, ExternalEmail=None)

    remote = _client(lambda request: httpx.Response(200, json=body)).read_user("j_d1")

    assert remote is not None
    assert remote.record.middle_name == ""
    assert remote.record.external_email is None


def test_read_user_not_found_returns_none() -> None:
    assert _client(lambda request: httpx.Response(404)).read_user("nobody") is None


def test_read_user_unexpected_status() -> None:
    with pytest.raises(UnexpectedStatusError) as excinfo:
        _client(lambda request: httpx.Response(403, text="Forbidden")).read_user("j_d1")

    assert excinfo.value.status_code == 403
    assert "Forbidden" in str(excinfo.value)


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(200, text="<html>not json</html>"),
        httpx.Response(200, json=[1, 2, 3]),
        httpx.Response(200, json={"FirstName": "John"}),
        httpx.Response(200, json=dict(READ_BODY, Activation={"IsActive": "yes"})),
    ],
)
def test_read_user_malformed_body(response: httpx.Response) -> None:
    with pytest.raises(SerializationError):
        _client(lambda request: response).read_user("j_d1")


def test_transport_errors_are_wrapped() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(TransportError):
        _client(handler).read_user("j_d1")


def test_create_user_posts_create_body() -> None:
    seen: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={})

    _client(handler).create_user(Role.FACULTY, RECORD)

    request = seen[0]
    assert request.method == "POST"
    assert request.url.path == USERS_PATH
    assert json.loads(request.content) == {
        "FirstName": "John",
        "MiddleName": "",
        "LastName": "Doe",
        "UserName": "j_d1",
        "OrgDefinedId": "A00000000",
        "ExternalEmail": "jdoe@example.edu",
        "RoleId": "109",
        "IsActive": True,
        "SendCreationEmail": False,
    }


def test_update_user_puts_to_user_id() -> None:
    seen: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={})

    _client(handler).update_user(100, RECORD)

    request = seen[0]
    assert request.method == "PUT"
    assert request.url.path == f"{USERS_PATH}100"
    assert json.loads(request.content) == update_payload(RECORD)
    assert json.loads(request.content)["Activation"] == {"IsActive": True}


def test_write_failures_raise() -> None:
    client = _client(lambda request: httpx.Response(500))

    with pytest.raises(UnexpectedStatusError):
        client.create_user(Role.STUDENT, RECORD)
    with pytest.raises(UnexpectedStatusError):
        client.update_user(100, RECORD)


def test_create_payload_uses_role_code() -> None:
    assert create_payload(Role.STAFF, RECORD)["RoleId"] == "118"
