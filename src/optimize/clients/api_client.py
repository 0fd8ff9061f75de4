from __future__ import annotations

import logging
import os
import time
from collections.abc import Mapping
from typing import Any
from urllib.parse import urljoin

import orjson
import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from optimize import __version__
from optimize.domain.models import Metadata

logger = logging.getLogger(__name__)

DEFAULT_ADDRESS = "https://api.stormforge.io/"


class ErrorType:
    APPLICATION_NOT_FOUND = "application-not-found"
    SCENARIO_NOT_FOUND = "scenario-not-found"
    EXPERIMENT_NOT_FOUND = "experiment-not-found"
    ACTIVITY_NOT_FOUND = "activity-not-found"
    EXPERIMENT_STOPPED = "experiment-stopped"
    TRIAL_UNAVAILABLE = "trial-unavailable"
    UNAUTHORIZED = "unauthorized"
    MALFORMED_RESPONSE = "malformed-response"
    UNEXPECTED = "unexpected"


NOT_FOUND_TYPES = frozenset(
    {
        ErrorType.APPLICATION_NOT_FOUND,
        ErrorType.SCENARIO_NOT_FOUND,
        ErrorType.EXPERIMENT_NOT_FOUND,
        ErrorType.ACTIVITY_NOT_FOUND,
    }
)


class APIError(RuntimeError):
    """Error returned by the optimization service (or the transport reaching it)."""

    def __init__(
        self,
        message: str,
        *,
        type: str = ErrorType.UNEXPECTED,  # noqa: A002 - mirrors the wire field
        status: int | None = None,
        location: str = "",
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.type = type
        self.status = status
        self.location = location
        self.retry_after = retry_after

    def __str__(self) -> str:
        return self.message


class MalformedResponse(APIError):
    def __init__(self, message: str, *, location: str = "") -> None:
        super().__init__(message, type=ErrorType.MALFORMED_RESPONSE, location=location)


def missing_link(rel: str, location: str = "") -> MalformedResponse:
    name = rel.rsplit("/", 1)[-1]
    return MalformedResponse(f"malformed response, missing {name} link", location=location)


def is_not_found(err: BaseException) -> bool:
    return isinstance(err, APIError) and err.type in NOT_FOUND_TYPES


def is_experiment_stopped(err: BaseException) -> bool:
    return isinstance(err, APIError) and err.type == ErrorType.EXPERIMENT_STOPPED


def _retry_after(value: str | None) -> float | None:
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


class APIClient:
    """Thin JSON-over-HTTP transport shared (read-only) by every API binding.

    Usage:
        client = APIClient(address, token=token)
        body, md = client.get_json("v2/applications/")

    Idempotent requests are retried by the mounted ``HTTPAdapter`` (502/503/504,
    honouring ``Retry-After``). Callers above this layer never retry.
    """

    def __init__(
        self,
        address: str = DEFAULT_ADDRESS,
        *,
        token: str | None = None,
        session: requests.Session | None = None,
        timeout: float = 30.0,
        retries: int = 3,
    ) -> None:
        self.address = address.rstrip("/") + "/"
        self.timeout = timeout
        self.retries = retries
        if session is None:
            session = requests.Session()
            retry = Retry(
                total=retries,
                backoff_factor=0.5,
                status_forcelist=(502, 503, 504),
                allowed_methods=Retry.DEFAULT_ALLOWED_METHODS,
                respect_retry_after_header=True,
                raise_on_status=False,
            )
            adapter = HTTPAdapter(max_retries=retry)
            session.mount("https://", adapter)
            session.mount("http://", adapter)
        self.session = session
        self.headers = {
            "Accept": "application/json",
            "User-Agent": f"optimize-cli/{__version__}",
        }
        if token:
            self.headers["Authorization"] = f"Bearer {token}"

    def url(self, path: str) -> str:
        return urljoin(self.address, path)

    def request(
        self,
        method: str,
        url: str,
        *,
        params: Mapping[str, Any] | None = None,
        body: Any = None,
        error_types: Mapping[int, str] | None = None,
        wait_unavailable: bool = False,
    ) -> requests.Response:
        """Send one request, mapping HTTP failures to ``APIError``.

        ``wait_unavailable`` sleeps through 503 + ``Retry-After`` responses (up to
        ``retries`` times) for non-idempotent calls the adapter will not retry.
        """
        headers = dict(self.headers)
        data = None
        if body is not None:
            headers["Content-Type"] = "application/json"
            data = orjson.dumps(body)
        target = self.url(url)
        attempts = 0
        while True:
            try:
                resp = self.session.request(
                    method,
                    target,
                    params=dict(params or {}),
                    data=data,
                    headers=headers,
                    timeout=self.timeout,
                )
            except requests.RequestException as exc:
                raise APIError(f"{method} {target}: {exc}") from exc
            if resp.status_code < 400:
                return resp
            err = self._error(resp, error_types or {})
            if (
                wait_unavailable
                and resp.status_code == 503
                and err.retry_after is not None
                and attempts < self.retries
            ):
                attempts += 1
                logger.debug("%s %s unavailable, retrying in %.1fs", method, target, err.retry_after)
                time.sleep(err.retry_after)
                continue
            raise err

    def _error(self, resp: requests.Response, error_types: Mapping[int, str]) -> APIError:
        message = ""
        try:
            payload = orjson.loads(resp.content) if resp.content else {}
            if isinstance(payload, dict):
                message = str(payload.get("error") or payload.get("message") or "")
        except orjson.JSONDecodeError:
            message = resp.text.strip()
        if resp.status_code in error_types:
            etype = error_types[resp.status_code]
        elif resp.status_code in (401, 403):
            etype = ErrorType.UNAUTHORIZED
        else:
            etype = ErrorType.UNEXPECTED
        if not message:
            message = f"unexpected server response ({resp.status_code} {resp.reason or ''})".strip()
        return APIError(
            message,
            type=etype,
            status=resp.status_code,
            location=resp.url or "",
            retry_after=_retry_after(resp.headers.get("Retry-After")),
        )

    def get_json(
        self,
        url: str,
        *,
        params: Mapping[str, Any] | None = None,
        error_types: Mapping[int, str] | None = None,
    ) -> tuple[dict[str, Any], Metadata]:
        resp = self.request("GET", url, params=params, error_types=error_types)
        return decode(resp), Metadata.from_response(resp)

    def send(
        self,
        method: str,
        url: str,
        body: Any = None,
        *,
        error_types: Mapping[int, str] | None = None,
        wait_unavailable: bool = False,
    ) -> tuple[dict[str, Any], Metadata]:
        resp = self.request(
            method, url, body=body, error_types=error_types, wait_unavailable=wait_unavailable
        )
        return decode(resp), Metadata.from_response(resp)


def decode(resp: requests.Response) -> dict[str, Any]:
    if not resp.content:
        return {}
    try:
        data = orjson.loads(resp.content)
    except orjson.JSONDecodeError as exc:
        raise MalformedResponse(f"malformed response, invalid JSON: {exc}", location=resp.url or "") from exc
    return data if isinstance(data, dict) else {"items": data}


def get_client(
    address: str | None = None, token: str | None = None, **kwargs: Any
) -> APIClient:
    return APIClient(
        address or os.getenv("OPTIMIZE_ADDRESS", DEFAULT_ADDRESS),
        token=token if token is not None else os.getenv("OPTIMIZE_TOKEN"),
        **kwargs,
    )


__all__ = [
    "NOT_FOUND_TYPES",
    "APIClient",
    "APIError",
    "ErrorType",
    "MalformedResponse",
    "decode",
    "get_client",
    "is_experiment_stopped",
    "is_not_found",
    "missing_link",
]
