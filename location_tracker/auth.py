"""Login session: token and user profile kept in the local key/value store."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

from location_tracker.api import LOGIN_PATH, MESSAGE_FIELD, STATUS_FIELD, STATUS_SUCCESS, ApiConfig, api_request
from location_tracker.errors import LoginError, NetworkError, ServerError, StorageError
from location_tracker.kvstore import JsonKeyValueStore
from location_tracker.models import UserProfile

logger = logging.getLogger(__name__)

TOKEN_KEY = "auth_token"
USER_KEY = "user_data"

ACCOUNT_RESTRICTED_STATUS = 452


class AuthProvider(Protocol):
    def get_token(self) -> str | None: ...

    def get_current_user_id(self) -> str | None: ...


@dataclass(frozen=True, slots=True)
class LoginResult:
    success: bool
    user: UserProfile | None = None
    error: str | None = None
    status_code: int | None = None


class AuthService:
    """Logs in against the remote API and keeps the session on disk."""

    def __init__(self, kv: JsonKeyValueStore, config: ApiConfig | None = None) -> None:
        self._kv = kv
        self._config = config or ApiConfig()

    def login(self, username: str, password: str) -> LoginResult:
        """Authenticate and persist the session.

        Failures are returned, not raised, with a message suitable for the user.
        """

        try:
            user = self._login(username, password)
        except LoginError as exc:
            logger.warning("Login failed for %s: %s", username, exc)
            return LoginResult(success=False, error=str(exc), status_code=exc.status_code)
        logger.info("Login successful for user %s (%s)", user.full_name or username, user.usertype_name)
        return LoginResult(success=True, user=user)

    def _login(self, username: str, password: str) -> UserProfile:
        try:
            payload = api_request(
                self._config,
                "POST",
                LOGIN_PATH,
                fields={"username": username, "password": password},
            )
        except ServerError as exc:
            if exc.status_code == ACCOUNT_RESTRICTED_STATUS:
                raise LoginError(
                    f"Account may be disabled or restricted (Error {ACCOUNT_RESTRICTED_STATUS})",
                    status_code=exc.status_code,
                ) from exc
            raise LoginError(exc.message or "Login failed", status_code=exc.status_code) from exc
        except NetworkError as exc:
            raise LoginError(str(exc)) from exc

        if not isinstance(payload, dict) or payload.get(STATUS_FIELD) != STATUS_SUCCESS:
            message = payload.get(MESSAGE_FIELD) if isinstance(payload, dict) else None
            raise LoginError(str(message or "Login failed"))

        logged_user = payload.get("logged_user")
        token = logged_user.get("api_access_token") if isinstance(logged_user, dict) else None
        if not token:
            raise LoginError("Login response did not include an access token")

        try:
            self._kv.set_item(TOKEN_KEY, str(token))
            self._kv.set_item(USER_KEY, logged_user)
        except StorageError as exc:
            raise LoginError(f"Could not store session: {exc}") from exc
        return UserProfile.from_dict(logged_user)

    def logout(self) -> None:
        """Forget the session.

        Raises:
            StorageError: If the session cannot be removed.
        """

        self._kv.remove_item(TOKEN_KEY)
        self._kv.remove_item(USER_KEY)
        logger.info("Logged out")

    def is_authenticated(self) -> bool:
        return bool(self.get_token())

    def get_token(self) -> str | None:
        try:
            token = self._kv.get_item(TOKEN_KEY)
        except StorageError as exc:
            logger.warning("Get token error: %s", exc)
            return None
        return str(token) if token else None

    def get_current_user(self) -> UserProfile | None:
        try:
            data = self._kv.get_item(USER_KEY)
        except StorageError as exc:
            logger.warning("Get current user error: %s", exc)
            return None
        if not isinstance(data, dict):
            return None
        return UserProfile.from_dict(data)

    def get_current_user_id(self) -> str | None:
        user = self.get_current_user()
        return user.employee_id if user is not None else None
