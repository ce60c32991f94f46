"""Request signing for the directory API.

Every call carries two HMAC-SHA256 signatures over ``VERB&PATH[ID]&TIMESTAMP``:
one made with the application key and one with the user (subject) key.
"""
from __future__ import annotations

import base64
import hashlib
import hmac
import time
from typing import Callable, Mapping, Optional
from urllib.parse import urlencode

from .config import SyncSettings


def canonical_string(method: str, path: str, resource_id: Optional[int], timestamp: int) -> str:
    target = path if resource_id is None else f"{path}{resource_id}"
    return f"{method.upper()}&{target}&{timestamp}"


def signature(key: bytes, message: str) -> str:
    """Return the unpadded base64url HMAC-SHA256 of ``message``."""

    digest = hmac.new(key, message.encode("utf-8"), hashlib.sha256).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def signed_uri(
    *,
    uri_base: str,
    method: str,
    path: str,
    timestamp: int,
    app_id: str,
    app_key: bytes,
    user_id: str,
    user_key: bytes,
    resource_id: Optional[int] = None,
    query: Optional[Mapping[str, str]] = None,
) -> str:
    message = canonical_string(method, path, resource_id, timestamp)
    target = path if resource_id is None else f"{path}{resource_id}"

    params = list((query or {}).items())
    params.extend(
        [
            ("x_a", app_id),
            ("x_c", signature(app_key, message)),
            ("x_b", user_id),
            ("x_d", signature(user_key, message)),
            ("x_t", str(timestamp)),
        ]
    )
    return f"{uri_base.rstrip('/')}{target}?{urlencode(params)}"


class RequestSigner:
    """Produce signed URIs using the configured credentials."""

    def __init__(self, settings: SyncSettings, *, clock: Callable[[], float] = time.time) -> None:
        self._settings = settings
        self._clock = clock

    def uri(
        self,
        method: str,
        path: str,
        *,
        resource_id: Optional[int] = None,
        query: Optional[Mapping[str, str]] = None,
    ) -> str:
        settings = self._settings
        return signed_uri(
            uri_base=settings.uri_base,
            method=method,
            path=path,
            timestamp=int(self._clock()),
            app_id=settings.app_id,
            app_key=settings.app_key,
            user_id=settings.user_id,
            user_key=settings.user_key,
            resource_id=resource_id,
            query=query,
        )


__all__ = ["RequestSigner", "canonical_string", "signature", "signed_uri"]
