import datetime as dt

import jwt
import pytest
from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials

from app.core.auth import get_current_owner
from app.core.config import get_settings

SECRET = "an-hs256-secret-that-is-long-enough-for-tests"


@pytest.fixture(autouse=True)
def reset_settings(monkeypatch):
    monkeypatch.delenv("SUPABASE_URL", raising=False)
    monkeypatch.delenv("SUPABASE_JWT_SECRET", raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def _bearer(token: str) -> HTTPAuthorizationCredentials:
    return HTTPAuthorizationCredentials(scheme="Bearer", credentials=token)


def test_missing_credentials_resolve_to_no_owner():
    assert get_current_owner(None) is None


def test_dev_owner_when_no_secret_configured():
    assert get_current_owner(_bearer("anything")) == get_settings().dev_owner


def test_valid_hs256_token_yields_subject(monkeypatch):
    monkeypatch.setenv("SUPABASE_JWT_SECRET", SECRET)
    get_settings.cache_clear()
    token = jwt.encode({"sub": "u1", "email": "u1@example.com"}, SECRET, algorithm="HS256")
    assert get_current_owner(_bearer(token)) == "u1"


def test_invalid_and_expired_tokens_are_rejected(monkeypatch):
    monkeypatch.setenv("SUPABASE_JWT_SECRET", SECRET)
    get_settings.cache_clear()

    forged = jwt.encode({"sub": "u1"}, "some-other-secret-that-is-also-long-enough", algorithm="HS256")
    with pytest.raises(HTTPException) as excinfo:
        get_current_owner(_bearer(forged))
    assert excinfo.value.status_code == 401

    expired = jwt.encode(
        {"sub": "u1", "exp": dt.datetime.now(dt.timezone.utc) - dt.timedelta(minutes=5)},
        SECRET,
        algorithm="HS256",
    )
    with pytest.raises(HTTPException) as excinfo:
        get_current_owner(_bearer(expired))
    assert excinfo.value.detail == "Token has expired"


def test_token_without_subject_is_rejected(monkeypatch):
    monkeypatch.setenv("SUPABASE_JWT_SECRET", SECRET)
    get_settings.cache_clear()
    token = jwt.encode({"email": "nobody@example.com"}, SECRET, algorithm="HS256")
    with pytest.raises(HTTPException):
        get_current_owner(_bearer(token))
