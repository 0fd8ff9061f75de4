"""Shared fixtures: an in-memory optimization service mounted on a real requests Session."""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from http import HTTPStatus
from pathlib import Path
from typing import Any
from urllib.parse import parse_qsl, urlsplit

import orjson
import pytest
import requests
from requests.adapters import BaseAdapter
from requests.structures import CaseInsensitiveDict

from optimize.clients.api_client import APIClient
from optimize.infrastructure.api.applications import ApplicationsAPI
from optimize.infrastructure.api.experiments import ExperimentsAPI
from optimize.runtime import AppContext

BASE = "http://optimize.test/"


def link(url: str, rel: str) -> str:
    return f'<{url}>; rel="{rel}"'


@dataclass
class Recorded:
    method: str
    path: str
    params: dict[str, str]
    json: Any
    headers: dict[str, str]


Reply = tuple[int, Any, dict[str, str]]
Handler = Callable[[Recorded], Reply]


@dataclass
class _Route:
    replies: list[Reply | Handler] = field(default_factory=list)


class FakeServer(BaseAdapter):
    """Routes requests by (method, path); a path ending in ``*`` matches a prefix.

    Static replies registered for a route are consumed in order, the last one
    repeating. Handlers receive the recorded request and return a reply.
    """

    def __init__(self) -> None:
        super().__init__()
        self.routes: dict[tuple[str, str], _Route] = {}
        self.requests: list[Recorded] = []
        self._lock = threading.Lock()

    def add(
        self,
        method: str,
        path: str,
        status: int = 200,
        json: Any = None,
        headers: dict[str, str] | None = None,
        handler: Handler | None = None,
    ) -> None:
        route = self.routes.setdefault((method.upper(), path), _Route())
        route.replies.append(handler if handler is not None else (status, json, headers or {}))

    def calls(self, method: str, path: str) -> list[Recorded]:
        with self._lock:
            return [r for r in self.requests if r.method == method and r.path == path]

    def _match(self, method: str, path: str) -> _Route | None:
        route = self.routes.get((method, path))
        if route is not None:
            return route
        best: tuple[int, _Route] | None = None
        for (m, p), r in self.routes.items():
            if m == method and p.endswith("*") and path.startswith(p[:-1]):
                if best is None or len(p) > best[0]:
                    best = (len(p), r)
        return best[1] if best else None

    def send(self, request: requests.PreparedRequest, **kwargs: Any) -> requests.Response:
        parts = urlsplit(request.url)
        body = request.body
        if isinstance(body, str):
            body = body.encode("utf-8")
        rec = Recorded(
            method=request.method or "GET",
            path=parts.path,
            params=dict(parse_qsl(parts.query)),
            json=orjson.loads(body) if body else None,
            headers=dict(request.headers),
        )
        with self._lock:
            self.requests.append(rec)
            route = self._match(rec.method, rec.path)
            if route is None:
                reply: Reply | Handler = (404, {"error": f"no route for {rec.method} {rec.path}"}, {})
            elif len(route.replies) > 1:
                reply = route.replies.pop(0)
            else:
                reply = route.replies[0]
        status, payload, headers = reply(rec) if callable(reply) else reply

        resp = requests.Response()
        resp.status_code = status
        resp.reason = HTTPStatus(status).phrase
        resp.headers = CaseInsensitiveDict(headers)
        resp._content = b"" if payload is None else orjson.dumps(payload)
        resp.url = request.url
        resp.request = request
        resp.encoding = "utf-8"
        return resp

    def close(self) -> None:
        pass


class FeedState:
    """Stateful activity feed: POST appends an item, DELETE on an item removes it."""

    def __init__(self, server: FakeServer, path: str = "/v2/activity/") -> None:
        self.path = path
        self.items: list[dict[str, Any]] = []
        self.deleted: list[str] = []
        self.created: list[dict[str, Any]] = []
        self._next = 1
        self._lock = threading.Lock()
        server.add("GET", path, handler=self._list)
        server.add("POST", path, handler=self._create)
        server.add("DELETE", path + "*", handler=self._delete)

    def url(self) -> str:
        return BASE.rstrip("/") + self.path

    def push(self, tag: str, scenario: str, title: str = "") -> str:
        with self._lock:
            n = self._next
            self._next += 1
            item_url = f"{self.url()}{n}"
            self.items.append(
                {
                    "id": str(n),
                    "url": item_url,
                    "external_url": scenario,
                    "title": title or f"{tag} {n}",
                    "tags": [tag],
                }
            )
        return item_url

    def _list(self, rec: Recorded) -> Reply:
        types = [t for t in rec.params.get("type", "").split(",") if t]
        with self._lock:
            items = [i for i in self.items if not types or set(types) & set(i["tags"])]
        return 200, {"version": "https://jsonfeed.org/version/1.1", "items": items}, {}

    def _create(self, rec: Recorded) -> Reply:
        self.created.append(rec.json)
        if "scan" in rec.json:
            self.push("scan", rec.json["scan"]["scenario"])
        elif "run" in rec.json:
            self.push("run", rec.json["run"]["scenario"])
        return 202, None, {}

    def _delete(self, rec: Recorded) -> Reply:
        with self._lock:
            before = len(self.items)
            self.items = [i for i in self.items if urlsplit(i["url"]).path != rec.path]
            if len(self.items) == before:
                return 404, {"error": "activity not found"}, {}
            self.deleted.append(rec.path)
        return 204, None, {}


@pytest.fixture
def server() -> FakeServer:
    return FakeServer()


@pytest.fixture
def client(server: FakeServer) -> APIClient:
    session = requests.Session()
    session.mount("http://", server)
    return APIClient(BASE, token="secret", session=session, retries=2)


@pytest.fixture
def apps_api(client: APIClient) -> ApplicationsAPI:
    return ApplicationsAPI(client)


@pytest.fixture
def experiments_api(client: APIClient) -> ExperimentsAPI:
    return ExperimentsAPI(client)


@pytest.fixture
def feed(server: FakeServer) -> FeedState:
    state = FeedState(server)
    server.add(
        "GET",
        "/v2/applications/",
        json={"applications": []},
        headers={"Link": link(state.path, "alternate")},
    )
    return state


@pytest.fixture(autouse=True)
def _reset_context(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Iterator[None]:
    monkeypatch.setenv("OPTIMIZE_CONFIG", str(tmp_path / "missing.yaml"))
    for name in (
        "OPTIMIZE_ADDRESS",
        "OPTIMIZE_TOKEN",
        "OPTIMIZE_OUTPUT",
        "OPTIMIZE_BATCH_SIZE",
        "OPTIMIZE_POLL_INTERVAL",
        "OPTIMIZE_POLL_JITTER",
        "OPTIMIZE_TIMEOUT",
        "OPTIMIZE_RETRIES",
    ):
        monkeypatch.delenv(name, raising=False)
    AppContext.reset()
    yield
    AppContext.reset()
