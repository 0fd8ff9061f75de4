"""Activity feed subscription: turns the pull-only feed into push delivery.

A ``Subscriber`` owns every fetch against the feed. Its delivery thread waits
for the poll interval, reads all feed pages, and forwards items it has not
forwarded yet onto a ``Channel`` in feed order. The consumer iterates the
channel until it is closed, which happens when the cancel event fires or a
poll fails for a reason retrying cannot fix.

Backpressure: the channel is bounded and sends block while it is full. That
keeps memory flat by tying the poll loop to the consumer's pace, at the cost
of delaying later feed entries while a slow item is being handled. Sends
re-check the cancel event so a blocked producer still stops promptly.

Dedup is mostly structural: acknowledged items are deleted server side and
vanish from later polls. The subscriber additionally remembers URLs it has
already forwarded for as long as they stay in the feed, so an item that is
still being handled is not delivered a second time.
"""
from __future__ import annotations

import logging
import queue
import random
import threading
from collections.abc import Iterator
from typing import Any

from optimize.clients.api_client import APIError, ErrorType
from optimize.domain.models import ActivityFeedQuery, ActivityItem
from optimize.infrastructure.api.applications import ApplicationsAPI
from optimize.services.lister import iter_pages

logger = logging.getLogger(__name__)

_CLOSED = object()
_SEND_POLL_S = 0.1


def is_transient(exc: Exception) -> bool:
    """Server side 5xx, or a transport failure that never got a response."""
    if not isinstance(exc, APIError):
        return False
    if exc.status is None:
        return exc.type == ErrorType.UNEXPECTED
    return exc.status >= 500


class ChannelClosed(RuntimeError):
    pass


class Channel:
    """Bounded queue with close semantics (``for item in channel`` ends on close)."""

    def __init__(self, maxsize: int = 1) -> None:
        self._queue: queue.Queue[Any] = queue.Queue(maxsize=maxsize)
        self._closed = threading.Event()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def send(self, item: ActivityItem, cancel: threading.Event | None = None) -> bool:
        """Block until the item is queued; False if cancelled first, ``ChannelClosed`` if closed."""
        while True:
            if self.closed:
                raise ChannelClosed("send on closed channel")
            if cancel is not None and cancel.is_set():
                return False
            try:
                self._queue.put(item, timeout=_SEND_POLL_S)
                return True
            except queue.Full:
                continue

    def close(self) -> None:
        if self.closed:
            return
        self._closed.set()
        # the sentinel may have to wait for the consumer to make room
        threading.Thread(target=self._queue.put, args=(_CLOSED,), daemon=True).start()

    def receive(self, timeout: float | None = None) -> ActivityItem | None:
        """Next item, or None once the channel is closed and drained."""
        item = self._queue.get(timeout=timeout)
        if item is _CLOSED:
            # leave the sentinel for any other reader
            self._queue.put(_CLOSED)
            return None
        return item

    def __iter__(self) -> Iterator[ActivityItem]:
        while True:
            item = self.receive()
            if item is None:
                return
            yield item


class SubscriberState:
    CREATED = "created"
    SUBSCRIBED = "subscribed"
    DELIVERING = "delivering"
    CANCELLED = "cancelled"


class Subscriber:
    def __init__(
        self,
        api: ApplicationsAPI,
        feed_url: str,
        query: ActivityFeedQuery,
        cancel: threading.Event,
        *,
        interval: float = 5.0,
        jitter: float = 0.0,
    ) -> None:
        self.api = api
        self.feed_url = feed_url
        self.query = query
        self.cancel = cancel
        self.interval = interval
        self.jitter = jitter
        self.state = SubscriberState.CREATED
        self.last_error: Exception | None = None
        # set when a poll failure ended the subscription
        self.error: Exception | None = None
        self._seen: set[str] = set()
        self._lock = threading.Lock()
        self._thread: threading.Thread | None = None

    def subscribe(self, channel: Channel) -> threading.Thread:
        """Start the delivery loop on its own thread; only one loop per subscriber."""
        with self._lock:
            if self._thread is not None:
                raise RuntimeError("subscriber is already delivering")
            self._thread = threading.Thread(
                target=self._deliver, args=(channel,), name="activity-subscriber", daemon=True
            )
            self.state = SubscriberState.DELIVERING
        self._thread.start()
        return self._thread

    def join(self, timeout: float | None = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    def _delay(self) -> float:
        return self.interval + (random.uniform(0, self.jitter) if self.jitter > 0 else 0.0)

    def poll(self) -> list[ActivityItem]:
        """Fetch the whole feed and return the items not forwarded before, in feed order."""
        first = self.api.list_activity(self.feed_url, self.query)
        current: list[ActivityItem] = []
        for page in iter_pages(first, lambda u: self.api.get_page(u, type(first))):
            current.extend(i for i in page.page_items() if self.query.matches(i))
        present = {i.url for i in current}
        # acknowledged items are gone from the feed; stop tracking them
        self._seen &= present
        fresh: list[ActivityItem] = []
        for item in current:
            if item.url in self._seen:
                continue
            self._seen.add(item.url)
            fresh.append(item)
        return fresh

    def _deliver(self, channel: Channel) -> None:
        logger.debug("activity subscription started for %s", self.feed_url)
        try:
            while not self.cancel.wait(self._delay()):
                try:
                    items = self.poll()
                except Exception as exc:
                    self.last_error = exc
                    if not is_transient(exc):
                        logger.error("activity feed poll failed, closing subscription: %s", exc)
                        self.error = exc
                        return
                    logger.warning("activity feed poll failed, retrying: %s", exc)
                    continue
                self.last_error = None
                for item in items:
                    if not channel.send(item, self.cancel):
                        break
        finally:
            self.state = SubscriberState.CANCELLED
            channel.close()
            logger.debug("activity subscription closed for %s", self.feed_url)


def subscribe_activity(
    api: ApplicationsAPI,
    query: ActivityFeedQuery,
    cancel: threading.Event,
    *,
    interval: float = 5.0,
    jitter: float = 0.0,
) -> Subscriber:
    """Validate the feed is reachable and return a subscriber ready to ``subscribe``."""
    feed_url = api.activity_feed_url()
    api.list_activity(feed_url, query)
    sub = Subscriber(api, feed_url, query, cancel, interval=interval, jitter=jitter)
    sub.state = SubscriberState.SUBSCRIBED
    return sub


__all__ = [
    "Channel",
    "ChannelClosed",
    "Subscriber",
    "SubscriberState",
    "is_transient",
    "subscribe_activity",
]
