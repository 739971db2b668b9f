"""One polling loop per resource, fanned out to every subscriber."""

from __future__ import annotations

import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum

from .errors import MarketDataError, SubscriptionWriteFailed, UpstreamError, UpstreamRateLimited
from .fetcher import ThrottledFetcher
from .models import FetchResult, MessageType, StreamMessage
from .sse import HEARTBEAT_FRAME, format_event
from .timer import AsyncioScheduler, Scheduler, TimerHandle

logger = logging.getLogger(__name__)


class FrameSink(ABC):
    """Where the multiplexer writes a subscriber's frames.

    write() must not block: a slow subscriber has to fail its own write
    rather than hold up everyone else on the same tick.
    """

    @abstractmethod
    def write(self, frame: str) -> None:
        """Accept one frame or raise SubscriptionWriteFailed."""


class QueueSink(FrameSink):
    """Bounded in-memory buffer drained by the subscriber's HTTP response."""

    def __init__(self, maxsize: int = 100) -> None:
        self._queue: asyncio.Queue[str] = asyncio.Queue(maxsize=maxsize)
        self._closed = False

    def write(self, frame: str) -> None:
        if self._closed:
            raise SubscriptionWriteFailed("Sink is closed")
        try:
            self._queue.put_nowait(frame)
        except asyncio.QueueFull:
            raise SubscriptionWriteFailed(
                f"Subscriber fell behind ({self._queue.maxsize} frames buffered)"
            ) from None

    async def read(self, timeout: float | None = None) -> str | None:
        """Next frame, or None if nothing arrives within `timeout`."""
        try:
            return await asyncio.wait_for(self._queue.get(), timeout)
        except TimeoutError:
            return None

    def drain(self) -> list[str]:
        """Everything currently buffered, without waiting."""
        frames = []
        while not self._queue.empty():
            frames.append(self._queue.get_nowait())
        return frames

    def close(self) -> None:
        self._closed = True

    @property
    def closed(self) -> bool:
        return self._closed


@dataclass(eq=False)
class Subscription:
    resource: str
    sink: FrameSink
    id: str = field(default_factory=lambda: uuid.uuid4().hex)


class StreamState(str, Enum):
    IDLE = "idle"
    ACTIVE = "active"


def _price_frames(result: FetchResult) -> list[str]:
    frames = [
        format_event(
            StreamMessage(
                type=MessageType.PRICE_UPDATE,
                data=result.value.to_dict(cached=result.cached),
            )
        )
    ]
    if result.degraded:
        frames.append(
            format_event(
                StreamMessage(
                    type=MessageType.WARNING,
                    message=result.message or "Using cached data due to API error",
                )
            )
        )
    return frames


def _error_frames(error: MarketDataError) -> list[str]:
    text = f"API Error: {error}" if isinstance(error, UpstreamError) else str(error)
    frames = [format_event(StreamMessage(type=MessageType.ERROR, message=text))]
    if isinstance(error, UpstreamRateLimited):
        frames.append(
            format_event(
                StreamMessage(
                    type=MessageType.RATE_LIMIT,
                    message=f"Rate limit reached. Retry in {error.retry_after}s.",
                )
            )
        )
    return frames


class ResourceStream:
    """Polling loop for one resource.

    IDLE → ACTIVE on the first subscribe: start the data and heartbeat timers
    and tick once right away. ACTIVE → IDLE when the last subscriber leaves:
    cancel both timers. Neither transition awaits, so concurrent subscribe
    and unsubscribe calls on the event loop always see a consistent state.

    Ticks are serialised: each fetch and its full fan-out finish before the
    next tick starts. A subscriber whose write fails is dropped on the spot;
    the loop and the other subscribers carry on.
    """

    def __init__(
        self,
        resource: str,
        fetcher: ThrottledFetcher,
        scheduler: Scheduler,
        *,
        period: float = 10.0,
        heartbeat_interval: float = 30.0,
        on_idle: Callable[[ResourceStream], None] | None = None,
    ) -> None:
        self.resource = resource
        self._fetcher = fetcher
        self._scheduler = scheduler
        self._period = period
        self._heartbeat_interval = heartbeat_interval
        self._on_idle = on_idle
        self._subscribers: dict[str, Subscription] = {}
        self._state = StreamState.IDLE
        self._data_timer: TimerHandle | None = None
        self._heartbeat_timer: TimerHandle | None = None
        self._tick_lock = asyncio.Lock()
        self._last_frames: list[str] = []

    @property
    def state(self) -> StreamState:
        return self._state

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    async def subscribe(self, sink: FrameSink) -> Subscription:
        """Attach `sink`. It receives `connected` before any data frame.

        Raises SubscriptionWriteFailed if the sink rejects the connected frame.
        """
        subscription = Subscription(resource=self.resource, sink=sink)
        sink.write(
            format_event(
                StreamMessage(
                    type=MessageType.CONNECTED,
                    message=f"Connected to {self.resource} price stream",
                )
            )
        )
        self._subscribers[subscription.id] = subscription
        logger.info(
            "Subscriber %s attached to %s (%d total)",
            subscription.id,
            self.resource,
            len(self._subscribers),
        )

        if self._state is StreamState.IDLE:
            self._activate()
            try:
                await self.tick()
            except asyncio.CancelledError:
                # The subscriber went away during the first fetch
                self.unsubscribe(subscription.id)
                raise
        else:
            # Late joiners get the latest tick now instead of waiting a period
            for frame in self._last_frames:
                if not self._deliver(subscription, frame):
                    break
        return subscription

    def unsubscribe(self, subscription_id: str) -> bool:
        """Detach a subscriber. Returns False if it was already gone."""
        subscription = self._subscribers.pop(subscription_id, None)
        if subscription is None:
            return False
        logger.info(
            "Subscriber %s detached from %s (%d left)",
            subscription_id,
            self.resource,
            len(self._subscribers),
        )
        if not self._subscribers and self._state is StreamState.ACTIVE:
            self._deactivate()
        return True

    def is_subscribed(self, subscription_id: str) -> bool:
        return subscription_id in self._subscribers

    def close(self) -> None:
        """Drop every subscriber and stop the loop."""
        self._subscribers.clear()
        if self._state is StreamState.ACTIVE:
            self._deactivate()

    async def tick(self) -> None:
        """Fetch once and broadcast the result to every current subscriber."""
        async with self._tick_lock:
            if self._state is StreamState.IDLE:
                return
            frames = await self._poll()
            if self._state is StreamState.ACTIVE:
                self._last_frames = frames
            self._broadcast(frames)

    async def heartbeat(self) -> None:
        self._broadcast([HEARTBEAT_FRAME])

    # --- Internal ---

    def _activate(self) -> None:
        self._state = StreamState.ACTIVE
        self._data_timer = self._scheduler.every(
            self._period, self.tick, name=f"stream-{self.resource}"
        )
        self._heartbeat_timer = self._scheduler.every(
            self._heartbeat_interval, self.heartbeat, name=f"heartbeat-{self.resource}"
        )
        logger.info("Stream loop for %s started (%.1fs period)", self.resource, self._period)

    def _deactivate(self) -> None:
        for timer in (self._data_timer, self._heartbeat_timer):
            if timer is not None:
                timer.cancel()
        self._data_timer = None
        self._heartbeat_timer = None
        self._last_frames = []
        self._state = StreamState.IDLE
        logger.info("Stream loop for %s stopped", self.resource)
        if self._on_idle is not None:
            self._on_idle(self)

    async def _poll(self) -> list[str]:
        try:
            result = await self._fetcher.fetch()
        except MarketDataError as e:
            return _error_frames(e)
        except Exception:
            logger.exception("Unexpected failure fetching %s", self.resource)
            return [
                format_event(
                    StreamMessage(type=MessageType.ERROR, message="Failed to fetch price")
                )
            ]
        return _price_frames(result)

    def _broadcast(self, frames: list[str]) -> None:
        for subscription in list(self._subscribers.values()):
            for frame in frames:
                if not self._deliver(subscription, frame):
                    break

    def _deliver(self, subscription: Subscription, frame: str) -> bool:
        try:
            subscription.sink.write(frame)
        except Exception as e:
            logger.warning(
                "Dropping subscriber %s on %s: %s", subscription.id, self.resource, e
            )
            self.unsubscribe(subscription.id)
            return False
        return True


class StreamMultiplexer:
    """Keeps one ResourceStream per resource, whatever the subscriber count.

    Upstream call volume therefore depends on the number of streamed
    resources, never on the number of connected clients.
    A stream is forgotten as soon as it goes idle, so only resources with
    live subscribers are held.
    """

    def __init__(
        self,
        fetcher_for: Callable[[str], ThrottledFetcher],
        scheduler: Scheduler | None = None,
        *,
        period: float = 10.0,
        heartbeat_interval: float = 30.0,
    ) -> None:
        self._fetcher_for = fetcher_for
        self._scheduler = scheduler or AsyncioScheduler()
        self._period = period
        self._heartbeat_interval = heartbeat_interval
        self._streams: dict[str, ResourceStream] = {}

    def stream(self, resource: str) -> ResourceStream:
        stream = self._streams.get(resource)
        if stream is None:
            stream = ResourceStream(
                resource,
                self._fetcher_for(resource),
                self._scheduler,
                period=self._period,
                heartbeat_interval=self._heartbeat_interval,
                on_idle=self._forget,
            )
            self._streams[resource] = stream
        return stream

    async def subscribe(self, resource: str, sink: FrameSink) -> Subscription:
        stream = self.stream(resource)
        try:
            return await stream.subscribe(sink)
        finally:
            if stream.state is StreamState.IDLE:
                self._forget(stream)

    def unsubscribe(self, subscription: Subscription) -> bool:
        """Idempotent; returns False for an unknown or already removed subscription."""
        stream = self._streams.get(subscription.resource)
        if stream is None:
            return False
        return stream.unsubscribe(subscription.id)

    def is_subscribed(self, subscription: Subscription) -> bool:
        stream = self._streams.get(subscription.resource)
        return stream is not None and stream.is_subscribed(subscription.id)

    def subscriber_count(self, resource: str | None = None) -> int:
        if resource is not None:
            stream = self._streams.get(resource)
            return stream.subscriber_count if stream else 0
        return sum(s.subscriber_count for s in self._streams.values())

    def active_resources(self) -> list[str]:
        return [r for r, s in self._streams.items() if s.state is StreamState.ACTIVE]

    def shutdown(self) -> None:
        streams = list(self._streams.values())
        for stream in streams:
            stream.close()
        self._streams.clear()
        logger.info("Stream multiplexer shut down (%d resources)", len(streams))

    def _forget(self, stream: ResourceStream) -> None:
        if self._streams.get(stream.resource) is stream:
            del self._streams[stream.resource]

    def __len__(self) -> int:
        return len(self._streams)
