"""Tests for optimize.services.subscriber: channel semantics and feed polling."""

from __future__ import annotations

import queue
import threading
import time
from collections.abc import Callable

import pytest

from conftest import BASE, FakeServer, FeedState, link
from optimize.clients.api_client import APIError, ErrorType, MalformedResponse
from optimize.domain.models import ActivityFeedQuery, ActivityItem
from optimize.infrastructure.api.applications import ApplicationsAPI
from optimize.services.subscriber import (
    Channel,
    ChannelClosed,
    Subscriber,
    SubscriberState,
    is_transient,
    subscribe_activity,
)

SCAN_RUN = ActivityFeedQuery().with_types("scan", "run")


def _wait_for(predicate: Callable[[], bool], timeout: float = 2.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


# -------------------- Channel -------------------- #


def test_channel_iteration_ends_on_close() -> None:
    ch = Channel(maxsize=4)
    ch.send(ActivityItem(url="u1"))
    ch.send(ActivityItem(url="u2"))
    ch.close()
    assert [i.url for i in ch] == ["u1", "u2"]
    assert ch.receive(timeout=1) is None


def test_send_on_closed_channel_raises() -> None:
    ch = Channel()
    ch.close()
    with pytest.raises(ChannelClosed):
        ch.send(ActivityItem(url="u"))


def test_blocked_send_returns_false_on_cancel() -> None:
    ch = Channel(maxsize=1)
    cancel = threading.Event()
    assert ch.send(ActivityItem(url="first"), cancel)
    result: list[bool] = []
    t = threading.Thread(target=lambda: result.append(ch.send(ActivityItem(url="second"), cancel)))
    t.start()
    time.sleep(0.05)
    cancel.set()
    t.join(timeout=2)
    assert result == [False]
    assert ch.receive(timeout=1).url == "first"


# -------------------- Subscriber -------------------- #


def test_delivers_items_in_feed_order_then_closes_on_cancel(feed: FeedState, apps_api: ApplicationsAPI) -> None:
    urls = [feed.push("scan", "s1"), feed.push("run", "s1"), feed.push("scan", "s2")]
    cancel = threading.Event()
    sub = subscribe_activity(apps_api, SCAN_RUN, cancel, interval=0.01)
    assert sub.state == SubscriberState.SUBSCRIBED
    ch = Channel(maxsize=10)
    sub.subscribe(ch)

    got = [ch.receive(timeout=2) for _ in urls]
    assert [i.url for i in got] == urls

    cancel.set()
    sub.join(timeout=2)
    assert ch.receive(timeout=2) is None
    assert sub.state == SubscriberState.CANCELLED


def test_in_flight_items_are_not_forwarded_twice(feed: FeedState, server: FakeServer, apps_api: ApplicationsAPI) -> None:
    first = feed.push("scan", "s1")
    cancel = threading.Event()
    sub = subscribe_activity(apps_api, SCAN_RUN, cancel, interval=0.01)
    ch = Channel(maxsize=10)
    sub.subscribe(ch)
    try:
        assert ch.receive(timeout=2).url == first
        # several more polls see the unacknowledged item
        polls = len(server.calls("GET", feed.path))
        assert _wait_for(lambda: len(server.calls("GET", feed.path)) >= polls + 3)
        with pytest.raises(queue.Empty):
            ch.receive(timeout=0.05)

        second = feed.push("run", "s1")
        assert ch.receive(timeout=2).url == second
    finally:
        cancel.set()
        sub.join(timeout=2)


def test_poll_filters_and_follows_pages(server: FakeServer, apps_api: ApplicationsAPI) -> None:
    server.add(
        "GET",
        "/v2/activity/",
        json={
            "items": [
                {"url": BASE + "v2/activity/1", "tags": ["scan"]},
                {"url": BASE + "v2/activity/2", "tags": ["other"]},
            ],
            "next_url": BASE + "v2/activity/page2",
        },
    )
    server.add("GET", "/v2/activity/page2", json={"items": [{"url": BASE + "v2/activity/3", "tags": ["run"]}]})

    s = Subscriber(apps_api, BASE + "v2/activity/", SCAN_RUN, threading.Event())
    assert [i.url for i in s.poll()] == [BASE + "v2/activity/1", BASE + "v2/activity/3"]
    # the same items are not returned while they stay in the feed
    assert s.poll() == []


def test_poll_failures_are_retried(server: FakeServer, apps_api: ApplicationsAPI) -> None:
    server.add("GET", "/v2/applications/", json={}, headers={"Link": link("/v2/activity/", "alternate")})
    server.add("GET", "/v2/activity/", json={"items": []})
    server.add("GET", "/v2/activity/", status=500, json={"error": "feed down"})
    server.add("GET", "/v2/activity/", json={"items": [{"url": BASE + "v2/activity/9", "tags": ["run"]}]})

    cancel = threading.Event()
    sub = subscribe_activity(apps_api, SCAN_RUN, cancel, interval=0.01)
    ch = Channel(maxsize=10)
    sub.subscribe(ch)
    try:
        assert ch.receive(timeout=2).url == BASE + "v2/activity/9"
        assert sub.last_error is None
    finally:
        cancel.set()
        sub.join(timeout=2)


def test_subscribe_fails_fast_when_feed_unreachable(server: FakeServer, apps_api: ApplicationsAPI) -> None:
    server.add("GET", "/v2/applications/", json={}, headers={"Link": link("/v2/activity/", "alternate")})
    server.add("GET", "/v2/activity/", status=401, json={"error": "unauthorized"})
    with pytest.raises(APIError, match="unauthorized"):
        subscribe_activity(apps_api, SCAN_RUN, threading.Event())


def test_subscribe_only_once(feed: FeedState, apps_api: ApplicationsAPI) -> None:
    cancel = threading.Event()
    sub = subscribe_activity(apps_api, SCAN_RUN, cancel, interval=10)
    sub.subscribe(Channel())
    try:
        with pytest.raises(RuntimeError):
            sub.subscribe(Channel())
    finally:
        cancel.set()
        sub.join(timeout=2)
    assert sub.state == SubscriberState.CANCELLED


def test_unauthorized_poll_closes_the_subscription(server: FakeServer, apps_api: ApplicationsAPI) -> None:
    server.add("GET", "/v2/applications/", json={}, headers={"Link": link("/v2/activity/", "alternate")})
    server.add("GET", "/v2/activity/", json={"items": []})
    server.add("GET", "/v2/activity/", status=401, json={"error": "token expired"})

    cancel = threading.Event()
    sub = subscribe_activity(apps_api, SCAN_RUN, cancel, interval=0.01)
    ch = Channel()
    sub.subscribe(ch)
    try:
        assert ch.receive(timeout=2) is None
        sub.join(timeout=2)
        assert isinstance(sub.error, APIError)
        assert sub.error.type == ErrorType.UNAUTHORIZED
        assert sub.state == SubscriberState.CANCELLED
        # no further polls once the subscription has closed
        assert len(server.calls("GET", "/v2/activity/")) == 2
    finally:
        cancel.set()


def test_transient_failures() -> None:
    assert is_transient(APIError("boom", status=502))
    assert is_transient(APIError("connection reset"))
    assert not is_transient(APIError("denied", type=ErrorType.UNAUTHORIZED, status=401))
    assert not is_transient(APIError("gone", type=ErrorType.ACTIVITY_NOT_FOUND, status=404))
    assert not is_transient(MalformedResponse("missing alternate link"))
    assert not is_transient(ValueError("bad item"))
