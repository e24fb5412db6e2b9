"""MQTT transport: ports, the aiomqtt adapter and an in-memory broker.

The broker is more than a publish target for wallbridge.  Retained
accessory descriptors on it are the host's accessory cache, so the
transport has to support inbound retained messages as well as
publishing.  Capabilities are split into small runtime-checkable
protocols, and callers check them with ``isinstance``:

- :class:`MqttPort`: publish and subscribe (every adapter)
- :class:`MqttMessageHandler`: inbound message callbacks
- :class:`MqttLifecycle`: explicit ``start()`` / ``stop()``
- :class:`MqttConnection`: a background connection that startup
  must wait for

:class:`MqttClient` is the production adapter.  :class:`MockMqttClient`
stands in for a broker in tests, including retained-message replay.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from wallbridge._settings import MqttSettings

logger = logging.getLogger(__name__)

MessageCallback = Callable[[str, str], Awaitable[None]]
"""Async callback receiving (topic, payload) for each inbound message."""


@dataclass(frozen=True)
class WillConfig:
    """Last will published by the broker if the bridge vanishes.

    Kept free of aiomqtt types; :class:`MqttClient` converts it when
    it connects.
    """

    topic: str
    payload: str = "offline"
    qos: int = 1
    retain: bool = True


# ---------------------------------------------------------------------------
# Ports
# ---------------------------------------------------------------------------


@runtime_checkable
class MqttPort(Protocol):
    """Publish/subscribe contract shared by every adapter."""

    async def publish(
        self,
        topic: str,
        payload: str,
        *,
        retain: bool = False,
        qos: int = 1,
    ) -> None: ...

    async def subscribe(self, topic: str) -> None: ...


@runtime_checkable
class MqttLifecycle(Protocol):
    """Adapters that need explicit start/stop around the bridge run."""

    async def start(self) -> None: ...

    async def stop(self) -> None: ...


@runtime_checkable
class MqttConnection(Protocol):
    """Adapters whose broker connection is established in the background."""

    async def wait_connected(self, timeout: float) -> bool: ...


@runtime_checkable
class MqttMessageHandler(Protocol):
    """Adapters that can deliver inbound messages to callbacks."""

    def on_message(self, callback: MessageCallback) -> None: ...


def topic_matches(pattern: str, topic: str) -> bool:
    """Return whether *topic* matches subscription *pattern*.

    Supports the single-level ``+`` and multi-level ``#`` wildcards.
    """
    pattern_parts = pattern.split("/")
    topic_parts = topic.split("/")
    for i, part in enumerate(pattern_parts):
        if part == "#":
            return True
        if i >= len(topic_parts):
            return False
        if part not in ("+", topic_parts[i]):
            return False
    return len(pattern_parts) == len(topic_parts)


# ---------------------------------------------------------------------------
# In-memory broker
# ---------------------------------------------------------------------------


@dataclass
class MockMqttClient:
    """In-memory broker stand-in that records every interaction.

    ``published`` and ``subscriptions`` record calls in order.
    Retained publishes are also kept in ``retained``, and a matching
    ``subscribe()`` replays them to the registered callbacks the way a
    broker does.  An empty retained payload clears the topic.
    ``retained`` survives :meth:`reset`, so one instance can model the
    broker across a bridge restart.

    Failure modes:

    - ``raise_on_publish``: every publish raises that exception.
    - ``connected = False``: ``wait_connected()`` reports failure,
      ``subscribe()`` replays nothing and ``publish()`` raises
      ``RuntimeError`` like :class:`MqttClient` does while offline.
    """

    published: list[tuple[str, str, bool, int]] = field(default_factory=list)
    subscriptions: list[str] = field(default_factory=list)
    retained: dict[str, str] = field(default_factory=dict)
    raise_on_publish: Exception | None = None
    connected: bool = True
    _callbacks: list[MessageCallback] = field(
        default_factory=list,
        init=False,
        repr=False,
    )

    async def publish(
        self,
        topic: str,
        payload: str,
        *,
        retain: bool = False,
        qos: int = 1,
    ) -> None:
        if self.raise_on_publish is not None:
            raise self.raise_on_publish
        if not self.connected:
            msg = "MockMqttClient is not connected"
            raise RuntimeError(msg)
        self.published.append((topic, payload, retain, qos))
        if not retain:
            return
        if payload:
            self.retained[topic] = payload
        else:
            self.retained.pop(topic, None)

    async def subscribe(self, topic: str) -> None:
        self.subscriptions.append(topic)
        if not self.connected:
            return
        for retained_topic, payload in list(self.retained.items()):
            if topic_matches(topic, retained_topic):
                await self.deliver(retained_topic, payload)

    def on_message(self, callback: MessageCallback) -> None:
        self._callbacks.append(callback)

    async def wait_connected(self, timeout: float) -> bool:  # noqa: ARG002
        return self.connected

    async def deliver(self, topic: str, payload: str) -> None:
        """Simulate an inbound message by invoking all callbacks."""
        for cb in self._callbacks:
            await cb(topic, payload)

    @property
    def publish_count(self) -> int:
        return len(self.published)

    def reset(self) -> None:
        """Forget recorded calls and callbacks; keep ``retained``."""
        self.published.clear()
        self.subscriptions.clear()
        self._callbacks.clear()

    def get_messages_for(self, topic: str) -> list[tuple[str, bool, int]]:
        """Return ``(payload, retain, qos)`` tuples for *topic*."""
        return [
            (payload, retain, qos)
            for t, payload, retain, qos in self.published
            if t == topic
        ]


# ---------------------------------------------------------------------------
# aiomqtt adapter
# ---------------------------------------------------------------------------


@dataclass
class MqttClient:
    """Production adapter on *aiomqtt*.

    :meth:`start` spawns a task that holds one broker session at a
    time.  When a session drops, the task reconnects after
    ``reconnect_interval`` seconds, doubling per consecutive failure
    up to ``reconnect_max_interval``.  Subscriptions are remembered and
    replayed on every new session, which also makes the broker resend
    retained accessory descriptors.

    ``publish()`` raises ``RuntimeError`` while no session is open.
    The host, health and error publishers wrap it fire-and-forget.
    aiomqtt is imported when the first session opens.
    """

    settings: MqttSettings
    will: WillConfig | None = None

    _callbacks: list[MessageCallback] = field(default_factory=list, init=False, repr=False)
    _subscriptions: set[str] = field(default_factory=set, init=False, repr=False)
    _client: Any = field(default=None, init=False, repr=False)
    _listen_task: asyncio.Task[None] | None = field(default=None, init=False, repr=False)
    _connected: asyncio.Event = field(default_factory=asyncio.Event, init=False, repr=False)

    async def publish(
        self,
        topic: str,
        payload: str,
        *,
        retain: bool = False,
        qos: int = 1,
    ) -> None:
        """Publish on the open session.

        Raises:
            RuntimeError: If no session is open.
        """
        if self._client is None:
            msg = "MqttClient is not connected"
            raise RuntimeError(msg)
        await self._client.publish(topic, payload, retain=retain, qos=qos)
        logger.debug("Published to %s (qos=%d, retain=%s)", topic, qos, retain)

    async def subscribe(self, topic: str) -> None:
        """Remember *topic* and subscribe now if a session is open."""
        self._subscriptions.add(topic)
        if self._client is not None:
            await self._client.subscribe(topic, qos=self.settings.qos)

    def on_message(self, callback: MessageCallback) -> None:
        self._callbacks.append(callback)

    async def start(self) -> None:
        if self._listen_task is not None and not self._listen_task.done():
            logger.debug("MqttClient already running")
            return
        self._listen_task = asyncio.create_task(self._run(), name="wallbridge-mqtt")

    async def wait_connected(self, timeout: float) -> bool:
        """Wait up to *timeout* seconds for an open session."""
        try:
            await asyncio.wait_for(self._connected.wait(), timeout)
        except TimeoutError:
            return False
        return True

    async def stop(self) -> None:
        """Close the session and stop reconnecting.  Idempotent."""
        task, self._listen_task = self._listen_task, None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._client = None
        self._connected.clear()

    @property
    def is_connected(self) -> bool:
        return self._connected.is_set()

    # -- session handling ---------------------------------------------------

    def _next_delay(self, failures: int) -> float:
        delay = self.settings.reconnect_interval * (2 ** max(failures - 1, 0))
        return min(delay, self.settings.reconnect_max_interval)

    def _client_options(self, aiomqtt: Any) -> dict[str, Any]:
        settings = self.settings
        options: dict[str, Any] = {
            "hostname": settings.host,
            "port": settings.port,
            "username": settings.username,
            "password": (
                settings.password.get_secret_value()
                if settings.password is not None
                else None
            ),
            "identifier": settings.client_id or None,
            "will": None,
        }
        if self.will is not None:
            options["will"] = aiomqtt.Will(
                topic=self.will.topic,
                payload=self.will.payload,
                qos=self.will.qos,
                retain=self.will.retain,
            )
        return options

    async def _run(self) -> None:
        import aiomqtt  # noqa: PLC0415

        failures = 0
        while True:
            try:
                async with aiomqtt.Client(**self._client_options(aiomqtt)) as client:
                    failures = 0
                    await self._serve(client)
            except asyncio.CancelledError:
                raise
            except Exception:
                failures += 1
                delay = self._next_delay(failures)
                logger.warning(
                    "MQTT session with %s:%d failed, retrying in %.1fs",
                    self.settings.host,
                    self.settings.port,
                    delay,
                    exc_info=True,
                )
                await asyncio.sleep(delay)

    async def _serve(self, client: Any) -> None:
        """Run one session: resubscribe, signal readiness, dispatch."""
        self._client = client
        try:
            for topic in sorted(self._subscriptions):
                await client.subscribe(topic, qos=self.settings.qos)
            self._connected.set()
            logger.info("MQTT connected to %s:%d", self.settings.host, self.settings.port)
            async for message in client.messages:
                await self._dispatch(message)
        finally:
            self._connected.clear()
            self._client = None

    async def _dispatch(self, message: Any) -> None:
        topic = str(message.topic)
        payload = _decode(message.payload)
        if payload is None:
            logger.debug("Skipping message without payload on %s", topic)
            return
        for cb in self._callbacks:
            try:
                await cb(topic, payload)
            except Exception:
                logger.exception("Message callback failed for %s", topic)


def _decode(payload: object) -> str | None:
    if payload is None:
        return None
    if isinstance(payload, (bytes, bytearray)):
        return payload.decode("utf-8")
    return str(payload)
