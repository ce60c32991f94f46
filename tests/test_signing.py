from __future__ import annotations

import base64
import hashlib
import hmac
import sys
from pathlib import Path
from urllib.parse import parse_qs, urlsplit

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from d2lsync.config import SyncSettings
from d2lsync.signing import RequestSigner, canonical_string, signature, signed_uri


PATH = "/d2l/api/lp/1.20/users/"


def _uri(**overrides) -> str:
    params = dict(
        uri_base="https://lms.example.edu",
        method="GET",
        path=PATH,
        timestamp=1_500_000_000,
        app_id="app-id",
        app_key=b"app-key",
        user_id="usr-id",
        user_key=b"usr-key",
    )
    params.update(overrides)
    return signed_uri(**params)


def test_canonical_string_includes_resource_id() -> None:
    assert canonical_string("get", PATH, None, 42) == f"GET&{PATH}&42"
    assert canonical_string("PUT", PATH, 100, 42) == f"PUT&{PATH}100&42"


def test_signature_is_unpadded_urlsafe_hmac_sha256() -> None:
    message = f"GET&{PATH}&1500000000"
    expected = base64.urlsafe_b64encode(
        hmac.new(b"secret", message.encode(), hashlib.sha256).digest()
    ).decode().rstrip("=")

    result = signature(b"secret", message)

    assert result == expected
    assert "=" not in result
    assert "+" not in result and "/" not in result


def test_signing_is_deterministic() -> None:
    assert _uri() == _uri()


def test_varying_any_input_changes_signatures() -> None:
    baseline = parse_qs(urlsplit(_uri()).query)

    for overrides in (
        {"method": "POST"},
        {"path": "/d2l/api/lp/1.21/users/"},
        {"resource_id": 7},
        {"timestamp": 1_500_000_001},
        {"app_key": b"other-app-key"},
    ):
        changed = parse_qs(urlsplit(_uri(**overrides)).query)
        assert changed["x_c"] != baseline["x_c"], overrides

    changed = parse_qs(urlsplit(_uri(user_key=b"other-usr-key")).query)
    assert changed["x_d"] != baseline["x_d"]
    assert changed["x_c"] == baseline["x_c"]


def test_signed_uri_layout() -> None:
    uri = _uri(method="PUT", resource_id=100, query={"userName": "j d1@example.edu"})
    parts = urlsplit(uri)
    query = parse_qs(parts.query)

    assert parts.scheme == "https"
    assert parts.netloc == "lms.example.edu"
    assert parts.path == f"{PATH}100"
    assert query["userName"] == ["j d1@example.edu"]
    assert query["x_a"] == ["app-id"]
    assert query["x_b"] == ["usr-id"]
    assert query["x_t"] == ["1500000000"]
    message = f"PUT&{PATH}100&1500000000"
    assert query["x_c"] == [signature(b"app-key", message)]
    assert query["x_d"] == [signature(b"usr-key", message)]


def test_request_signer_uses_settings_and_clock() -> None:
    settings = SyncSettings(
        app_id="app-id",
        app_key=b"app-key",
        user_id="usr-id",
        user_key=b"usr-key",
        uri_base="https://lms.example.edu/",
    )
    signer = RequestSigner(settings, clock=lambda: 1_500_000_000.9)

    assert signer.uri("GET", PATH) == _uri()
