from __future__ import annotations

from fastapi import Request, Response

from app.core.config import SessionSettings
from app.services.credential_vault import CredentialVault
from app.services.session_binder import SessionBinder


def _request(cookie: str | None = None) -> Request:
    headers = []
    if cookie is not None:
        headers.append((b"cookie", cookie.encode("latin-1")))
    return Request({"type": "http", "method": "GET", "path": "/", "headers": headers})


def _binder(**overrides) -> SessionBinder:
    settings = SessionSettings(SESSION_COOKIE_SECURE=True, **overrides)
    return SessionBinder(CredentialVault(secret="cookie-secret"), settings)


def _set_cookie_headers(response: Response) -> list[str]:
    return response.headers.getlist("set-cookie")


def test_resolve_without_cookie_returns_none() -> None:
    assert _binder().resolve(_request()) is None


def test_ensure_mints_session_and_sets_hardened_cookie() -> None:
    binder = _binder()
    response = Response()

    session_id = binder.ensure(_request(), response)

    headers = _set_cookie_headers(response)
    assert len(headers) == 1
    cookie = headers[0]
    assert cookie.startswith("aa_sid=")
    assert session_id not in cookie
    lowered = cookie.lower()
    assert "httponly" in lowered
    assert "secure" in lowered
    assert "samesite=lax" in lowered
    assert "path=/" in lowered
    assert f"max-age={60 * 60 * 24 * 90}" in lowered


def test_ensure_reuses_existing_session() -> None:
    binder = _binder()
    first = Response()
    session_id = binder.ensure(_request(), first)
    sealed = _set_cookie_headers(first)[0].split(";")[0].split("=", 1)[1]

    second = Response()
    resolved = binder.ensure(_request(f"aa_sid={sealed}"), second)

    assert resolved == session_id
    assert _set_cookie_headers(second) == []


def test_tampered_cookie_is_treated_as_absent() -> None:
    binder = _binder()

    assert binder.resolve(_request("aa_sid=garbage-value")) is None


def test_cookie_sealed_with_other_secret_is_ignored() -> None:
    other = CredentialVault(secret="different")
    sealed = other.seal("session-abc")

    assert _binder().resolve(_request(f"aa_sid={sealed}")) is None


def test_clear_expires_cookie() -> None:
    response = Response()

    _binder().clear(response)

    cookie = _set_cookie_headers(response)[0].lower()
    assert cookie.startswith("aa_sid=")
    assert "max-age=0" in cookie


def test_custom_cookie_name_and_domain() -> None:
    binder = _binder(SESSION_COOKIE_NAME="ga_session", SESSION_COOKIE_DOMAIN="example.com")
    response = Response()

    binder.ensure(_request(), response)

    cookie = _set_cookie_headers(response)[0]
    assert cookie.startswith("ga_session=")
    assert "Domain=example.com" in cookie
