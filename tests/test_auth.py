from __future__ import annotations

import io
import json
import urllib.error
import urllib.parse
import urllib.request

import pytest

from location_tracker.api import ApiConfig
from location_tracker.auth import TOKEN_KEY, USER_KEY, AuthService

LOGGED_USER = {
    "api_access_token": "tok-abc",
    "full_name": "Asha Verma",
    "email": "asha@example.test",
    "usertype_name": "Field Executive",
    "mobile_phone": "9876543210",
    "employee_id": 42,
}


class _Response:
    def __init__(self, body: bytes) -> None:
        self._body = body

    def read(self) -> bytes:
        return self._body

    def __enter__(self) -> _Response:
        return self

    def __exit__(self, *exc) -> None:
        return None


@pytest.fixture
def reply(monkeypatch):
    state: dict = {"value": None, "requests": []}

    def fake_urlopen(req, timeout):
        state["requests"].append(req)
        value = state["value"]
        if isinstance(value, BaseException):
            raise value
        return _Response(json.dumps(value).encode())

    monkeypatch.setattr(urllib.request, "urlopen", fake_urlopen)
    return state


@pytest.fixture
def service(kv) -> AuthService:
    return AuthService(kv, ApiConfig(base_url="http://api.example.test"))


def test_login_success_persists_session(service, kv, reply):
    reply["value"] = {"apiexec_status": "success", "logged_user": LOGGED_USER}

    result = service.login("9876543210", "secret")

    assert result.success
    assert result.user is not None and result.user.full_name == "Asha Verma"
    assert kv.get_item(TOKEN_KEY) == "tok-abc"
    assert kv.get_item(USER_KEY)["email"] == "asha@example.test"
    assert service.is_authenticated()
    assert service.get_token() == "tok-abc"
    assert service.get_current_user_id() == "42"

    req = reply["requests"][0]
    assert req.full_url == "http://api.example.test/api/auth/login"
    assert dict(urllib.parse.parse_qsl(req.data.decode())) == {"username": "9876543210", "password": "secret"}


def test_login_rejected_uses_server_message(service, reply):
    reply["value"] = {"apiexec_status": "failed", "usr_msg": "Invalid username or password"}

    result = service.login("9876543210", "wrong")

    assert not result.success
    assert result.error == "Invalid username or password"
    assert not service.is_authenticated()


def test_login_452_is_account_restricted(service, reply):
    reply["value"] = urllib.error.HTTPError(
        "http://api.example.test", 452, "restricted", {}, io.BytesIO(b"{}")  # type: ignore[arg-type]
    )

    result = service.login("9876543210", "secret")

    assert not result.success
    assert result.status_code == 452
    assert "disabled or restricted" in (result.error or "")


def test_login_network_failure(service, reply):
    reply["value"] = urllib.error.URLError("no route to host")

    result = service.login("9876543210", "secret")

    assert not result.success
    assert result.status_code is None


def test_login_without_token_fails(service, reply):
    reply["value"] = {"apiexec_status": "success", "logged_user": {"full_name": "X"}}

    assert not service.login("u", "p").success
    assert service.get_token() is None


def test_logout_clears_session(service, kv, reply):
    reply["value"] = {"apiexec_status": "success", "logged_user": LOGGED_USER}
    service.login("9876543210", "secret")

    service.logout()

    assert service.get_token() is None
    assert service.get_current_user() is None
    assert service.get_current_user_id() is None


def test_logout_keeps_history(service, kv, reply):
    kv.set_item("location_history", [{"id": "1"}])
    service.logout()

    assert kv.get_item("location_history") == [{"id": "1"}]
