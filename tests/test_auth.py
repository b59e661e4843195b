"""Tests for dispatch backend token management."""
import time
from unittest.mock import MagicMock

import jwt
import pytest

from src.services.auth_service import AuthService


def make_token(expires_in: int) -> str:
    return jwt.encode({"sub": "operator", "exp": int(time.time()) + expires_in}, "secret", algorithm="HS256")


def login_response(status_code=200, body=None):
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = body or {}
    response.text = str(body)
    return response


@pytest.fixture(autouse=True)
def no_env_token(monkeypatch):
    monkeypatch.delenv("DISPATCH_TOKEN", raising=False)


@pytest.fixture
def env_file(tmp_path):
    path = tmp_path / ".env"
    path.write_text("DISPATCH_TOKEN=\n")
    return path


def make_service(session, env_file):
    return AuthService(
        base_url="http://dispatch.local/api/",
        username="operator",
        password="secret",
        session=session,
        env_file=str(env_file),
    )


def test_no_token_info(env_file):
    service = make_service(MagicMock(), env_file)
    assert service.get_token_info()["status"] == "no_token"


def test_valid_token_is_reused(monkeypatch, env_file):
    token = make_token(3600)
    monkeypatch.setenv("DISPATCH_TOKEN", token)
    session = MagicMock()
    service = make_service(session, env_file)

    assert service.get_valid_token() == token
    assert service.get_token_info()["status"] == "valid"
    session.post.assert_not_called()


def test_token_close_to_expiry_is_refreshed(monkeypatch, env_file):
    monkeypatch.setenv("DISPATCH_TOKEN", make_token(60))
    fresh = make_token(3600)
    session = MagicMock()
    session.post.return_value = login_response(body={"data": {"accessToken": fresh}})
    service = make_service(session, env_file)

    assert service.get_valid_token() == fresh
    url = session.post.call_args.args[0]
    assert url == "http://dispatch.local/api/auth/login"
    assert session.post.call_args.kwargs["json"] == {"username": "operator", "password": "secret"}
    assert fresh in env_file.read_text()


def test_failed_login_returns_none(env_file):
    session = MagicMock()
    session.post.return_value = login_response(401, {"message": "bad credentials"})
    service = make_service(session, env_file)
    assert service.get_valid_token() is None
    assert service.refresh_token() is False


def test_missing_credentials_skip_login(env_file):
    session = MagicMock()
    service = AuthService(base_url="http://dispatch.local", username="", password="", session=session, env_file=str(env_file))
    assert service.refresh_token() is False
    session.post.assert_not_called()


def test_refresh_without_env_file_keeps_token_in_memory(tmp_path):
    fresh = make_token(3600)
    session = MagicMock()
    session.post.return_value = login_response(body={"token": fresh})
    service = make_service(session, tmp_path / "missing.env")

    assert service.refresh_token() is True
    assert service.get_valid_token() == fresh


def test_expired_token_info(monkeypatch, env_file):
    monkeypatch.setenv("DISPATCH_TOKEN", make_token(-120))
    service = make_service(MagicMock(), env_file)
    assert service.get_token_info()["status"] == "expired"
