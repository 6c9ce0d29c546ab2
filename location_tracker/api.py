"""Remote API client: location sync, history fetch and the shared request plumbing."""

from __future__ import annotations

import base64
import json
import logging
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol

from location_tracker.errors import AuthMissing, NetworkError, ServerError
from location_tracker.models import LocationSample
from location_tracker.timeutils import coerce_dt, to_iso

logger = logging.getLogger(__name__)

STATUS_FIELD = "apiexec_status"
STATUS_SUCCESS = "success"
MESSAGE_FIELD = "usr_msg"

LOCATION_UPDATE_PATH = "/api/employee/location/update"
LOCATION_HISTORY_PATH = "/location/history"
LOGIN_PATH = "/api/auth/login"


class SyncClient(Protocol):
    def push(self, sample: LocationSample, auth_token: str | None, employee_id: str | None) -> dict[str, Any]: ...


@dataclass(frozen=True, slots=True)
class ApiConfig:
    """Static settings for the remote API.

    ``subdomain`` is the tenant identifier sent with every request. The
    ``app_auth_*`` and ``basic_auth_*`` values are the app-level credentials the
    server expects on top of the user's access token; empty values are not sent.
    """

    base_url: str = "http://app.lazyledgers.com"
    subdomain: str = "qtech.in"
    app_os: str = "web"
    app_auth_user: str = ""
    app_auth_pwd: str = ""
    basic_auth_user: str = ""
    basic_auth_pwd: str = ""
    timeout_seconds: float = 15.0
    user_agent: str = "location-tracker/0.1.0"

    def url(self, path: str) -> str:
        return self.base_url.rstrip("/") + path

    def headers(self, token: str | None = None) -> dict[str, str]:
        headers = {
            "Accept": "application/json",
            "User-Agent": self.user_agent,
            "subdomain": self.subdomain,
            "app-os": self.app_os,
            "data-format": "j",
            "is-api-call": "1",
        }
        if self.app_auth_user:
            headers["app-auth-user"] = self.app_auth_user
        if self.app_auth_pwd:
            headers["app-auth-pwd"] = self.app_auth_pwd
        if self.basic_auth_user:
            creds = f"{self.basic_auth_user}:{self.basic_auth_pwd}".encode("utf-8")
            headers["Authorization"] = "Basic " + base64.b64encode(creds).decode("ascii")
        if token:
            headers["user-access-token"] = token
        return headers


def _decode_body(body: bytes) -> Any:
    text = body.decode("utf-8", errors="replace").strip()
    if not text:
        return {}
    return json.loads(text)


def api_request(
    config: ApiConfig,
    method: str,
    path: str,
    *,
    fields: dict[str, str] | None = None,
    params: dict[str, str] | None = None,
    token: str | None = None,
) -> Any:
    """Send one request and return the decoded JSON body.

    Args:
        config: API settings (base URL, tenant, credentials).
        method: HTTP method.
        path: Path under the base URL.
        fields: Form fields, sent url-encoded in the body.
        params: Query string parameters.
        token: The user's access token, if any.

    Raises:
        ServerError: On a non-2xx status. ``message`` carries the server's ``usr_msg`` if present.
        NetworkError: On transport failures or a body that is not JSON.
    """

    url = config.url(path)
    if params:
        url = f"{url}?{urllib.parse.urlencode(params)}"
    headers = config.headers(token)
    data: bytes | None = None
    if fields is not None:
        data = urllib.parse.urlencode(fields).encode("utf-8")
        headers["Content-Type"] = "application/x-www-form-urlencoded"
    req = urllib.request.Request(url, data=data, headers=headers, method=method)

    try:
        with urllib.request.urlopen(req, timeout=config.timeout_seconds) as resp:  # noqa: S310
            body = resp.read()
    except urllib.error.HTTPError as exc:
        message = ""
        try:
            payload = _decode_body(exc.read())
            if isinstance(payload, dict):
                message = str(payload.get(MESSAGE_FIELD, "") or "")
        except (OSError, json.JSONDecodeError):
            pass
        raise ServerError(exc.code, message or str(exc.reason)) from exc
    except (urllib.error.URLError, OSError) as exc:
        raise NetworkError(f"{method} {path} failed: {exc}") from exc

    try:
        return _decode_body(body)
    except json.JSONDecodeError as exc:
        raise NetworkError(f"{method} {path} returned a non-JSON body") from exc


def check_status(payload: Any) -> None:
    """Raise ``ServerError`` if the body's status discriminator reports a failure.

    Bodies without the discriminator are accepted.
    """

    if not isinstance(payload, dict) or STATUS_FIELD not in payload:
        return
    if str(payload[STATUS_FIELD]).lower() != STATUS_SUCCESS:
        raise ServerError(200, str(payload.get(MESSAGE_FIELD, "") or payload[STATUS_FIELD]))


class HttpSyncClient:
    """Pushes samples to the employee location endpoint. One attempt per call, no retries."""

    def __init__(self, config: ApiConfig | None = None) -> None:
        self._config = config or ApiConfig()

    @property
    def config(self) -> ApiConfig:
        return self._config

    def push(self, sample: LocationSample, auth_token: str | None, employee_id: str | None) -> dict[str, Any]:
        """Send one sample.

        Raises:
            AuthMissing: If ``auth_token`` or ``employee_id`` is empty.
            NetworkError: On transport failure.
            ServerError: On non-2xx or a failure status in the body.
        """

        if not employee_id:
            raise AuthMissing("Employee ID not found")
        if not auth_token:
            raise AuthMissing("Auth token not found")

        fields = {
            "employee_id": str(employee_id),
            "latitude": repr(sample.latitude),
            "longitude": repr(sample.longitude),
            "accuracy": "" if sample.accuracy is None else repr(sample.accuracy),
            "timestamp": sample.timestamp,
        }
        if sample.location_name:
            fields["location_name"] = sample.location_name

        payload = api_request(self._config, "POST", LOCATION_UPDATE_PATH, fields=fields, token=auth_token)
        check_status(payload)
        logger.debug("Location update response: %s", payload)
        return payload if isinstance(payload, dict) else {"data": payload}

    def fetch_history(
        self,
        employee_id: str | None = None,
        start: datetime | str | None = None,
        end: datetime | str | None = None,
        *,
        auth_token: str | None = None,
    ) -> list[LocationSample]:
        """Fetch the server's copy of an employee's location history.

        Records that cannot be parsed are skipped.

        Raises:
            NetworkError: On transport failure.
            ServerError: On non-2xx or a failure status in the body.
        """

        params: dict[str, str] = {}
        if employee_id:
            params["employeeId"] = str(employee_id)
        if start is not None:
            params["startDate"] = to_iso(coerce_dt(start))
        if end is not None:
            params["endDate"] = to_iso(coerce_dt(end))

        payload = api_request(self._config, "GET", LOCATION_HISTORY_PATH, params=params, token=auth_token)
        check_status(payload)
        if isinstance(payload, dict):
            records = payload.get("data") or payload.get("locations") or []
        else:
            records = payload
        if not isinstance(records, list):
            return []

        samples: list[LocationSample] = []
        for record in records:
            if not isinstance(record, dict):
                continue
            try:
                samples.append(LocationSample.from_dict(record))
            except (KeyError, ValueError, TypeError):
                logger.debug("Skipping unparsable remote record %r", record)
        return samples
