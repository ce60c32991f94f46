"""HTTP client for the user endpoints of the directory API."""

from __future__ import annotations

import logging
from typing import Dict, Optional

import httpx

from .config import SyncSettings
from .models import RemoteUser, Role, UserRecord
from .signing import RequestSigner

logger = logging.getLogger("d2lsync.directory")

USERS_PATH = "/d2l/api/lp/1.20/users/"


class DirectoryError(RuntimeError):
    """Raised when a directory API call fails."""


class TransportError(DirectoryError):
    """Raised when the directory API could not be reached."""


class UnexpectedStatusError(DirectoryError):
    """Raised when the directory API answers with a status we do not handle."""

    def __init__(self, method: str, status_code: int, detail: str = "") -> None:
        message = f"{method} {USERS_PATH} failed with status {status_code}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.method = method
        self.status_code = status_code


class SerializationError(DirectoryError):
    """Raised when a directory API response cannot be interpreted."""


def _record_fields(record: UserRecord) -> Dict[str, object]:
    return {
        "FirstName": record.first_name,
        "MiddleName": record.middle_name,
        "LastName": record.last_name,
        "UserName": record.user_name,
        "OrgDefinedId": record.org_defined_id,
        "ExternalEmail": record.external_email,
    }


def create_payload(role: Role, record: UserRecord) -> Dict[str, object]:
    payload = _record_fields(record)
    payload.update(
        {
            "RoleId": role.code,
            "IsActive": True,
            "SendCreationEmail": False,
        }
    )
    return payload


def update_payload(record: UserRecord) -> Dict[str, object]:
    payload = _record_fields(record)
    payload["Activation"] = {"IsActive": True}
    return payload


def _required_str(payload: Dict[str, object], key: str) -> str:
    value = payload[key]
    if not isinstance(value, str):
        raise TypeError(f"{key} must be a string")
    return value


def _optional_str(value: object) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str):
        raise TypeError(f"expected a string, got {type(value).__name__}")
    return value


def parse_remote_user(payload: object) -> RemoteUser:
    """Convert a user read response into a :class:`RemoteUser`."""

    if not isinstance(payload, dict):
        raise SerializationError("Directory API returned an unexpected response payload")

    try:
        activation = payload["Activation"]
        if not isinstance(activation, dict):
            raise TypeError("Activation must be an object")
        is_active = activation["IsActive"]
        if not isinstance(is_active, bool):
            raise TypeError("IsActive must be a boolean")
        user_id = payload["UserId"]
        if isinstance(user_id, bool) or not isinstance(user_id, int):
            raise TypeError("UserId must be an integer")
        record = UserRecord(
            first_name=_required_str(payload, "FirstName"),
            middle_name=_optional_str(payload.get("MiddleName")) or "",
            last_name=_required_str(payload, "LastName"),
            user_name=_required_str(payload, "UserName"),
            org_defined_id=_optional_str(payload.get("OrgDefinedId")),
            external_email=_optional_str(payload.get("ExternalEmail")),
        )
    except (KeyError, TypeError) as exc:
        raise SerializationError(f"Directory API response was missing required fields: {exc}") from exc

    return RemoteUser(user_id=user_id, record=record, is_active=is_active)


class DirectoryClient:
    """Read, create and update directory users through signed requests."""

    def __init__(
        self,
        settings: SyncSettings,
        *,
        signer: Optional[RequestSigner] = None,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self._signer = signer or RequestSigner(settings)
        self._client = client or httpx.Client(timeout=settings.http_timeout)

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "DirectoryClient":
        return self

    def __exit__(self, *_exc: object) -> None:
        self.close()

    def _send(self, method: str, url: str, *, json: Optional[Dict[str, object]] = None) -> httpx.Response:
        try:
            return self._client.request(method, url, json=json)
        except httpx.HTTPError as exc:
            raise TransportError(f"Failed to contact directory API: {exc}") from exc

    def read_user(self, user_name: str) -> Optional[RemoteUser]:
        """Return the directory's copy of ``user_name`` or ``None`` if unknown."""

        url = self._signer.uri("GET", USERS_PATH, query={"userName": user_name})
        response = self._send("GET", url)

        if response.status_code == 404:
            return None
        if response.status_code != 200:
            raise UnexpectedStatusError("GET", response.status_code, response.text.strip())

        try:
            payload = response.json()
        except ValueError as exc:
            raise SerializationError("Directory API returned an invalid response") from exc
        return parse_remote_user(payload)

    def create_user(self, role: Role, record: UserRecord) -> None:
        payload = create_payload(role, record)
        url = self._signer.uri("POST", USERS_PATH)
        response = self._send("POST", url, json=payload)
        if response.status_code != 200:
            raise UnexpectedStatusError("POST", response.status_code, response.text.strip())
        logger.debug("Created directory user %s", record.user_name)

    def update_user(self, user_id: int, record: UserRecord) -> None:
        payload = update_payload(record)
        url = self._signer.uri("PUT", USERS_PATH, resource_id=user_id)
        response = self._send("PUT", url, json=payload)
        if response.status_code != 200:
            raise UnexpectedStatusError("PUT", response.status_code, response.text.strip())
        logger.debug("Updated directory user %s (id %s)", record.user_name, user_id)


__all__ = [
    "DirectoryClient",
    "DirectoryError",
    "SerializationError",
    "TransportError",
    "USERS_PATH",
    "UnexpectedStatusError",
    "create_payload",
    "parse_remote_user",
    "update_payload",
]
