"""
Broker connection: configuration and a blocking connect-with-retry loop.

    Configuring -> Connecting -> Connected
    Configuring -> Connecting -> Offline | Error -> Configuring -> ...

Configuration is read from settings; when no host is stored the operator is
asked for the full set.  Each attempt uses a fresh paho client; the previous
one is disposed first.  The loop only returns once a client reports
Connected.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable

import paho.mqtt.client as mqtt

from harden_mqtt.config import (
    MQTT_DEFAULT_HOST,
    MQTT_DEFAULT_PORT,
    MQTT_KEEPALIVE_SEC,
    MQTT_RECONNECT_DELAY_SEC,
    MQTT_TLS_PORT,
    SETTING_MQTT_HOST,
    SETTING_MQTT_PASSWORD,
    SETTING_MQTT_PORT,
    SETTING_MQTT_TLS,
    SETTING_MQTT_USERNAME,
)
from harden_mqtt.console import Prompt, user_input, user_input_bool, user_input_int
from harden_mqtt.events import EventLog
from harden_mqtt.settings import Settings

PORT_MIN = 1
PORT_MAX = 65535


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


@dataclass
class ConnectionConfig:
    host: str
    port: int = MQTT_TLS_PORT
    tls: bool = True
    username: str = ""
    password: str = ""

    @classmethod
    def load(cls, settings: Settings) -> "ConnectionConfig":
        port = settings.get(SETTING_MQTT_PORT, MQTT_TLS_PORT)
        if not PORT_MIN <= port <= PORT_MAX:
            port = MQTT_TLS_PORT
        return cls(
            host=settings.get(SETTING_MQTT_HOST, ""),
            port=port,
            tls=settings.get(SETTING_MQTT_TLS, True),
            username=settings.get(SETTING_MQTT_USERNAME, ""),
            password=settings.get(SETTING_MQTT_PASSWORD, ""),
        )

    @classmethod
    def collect(cls, settings: Settings, prompt: Prompt = input) -> "ConnectionConfig":
        """Ask the operator for every value, persisting each as it is entered."""
        host = ""
        while not host:
            host = user_input("MQTT Host", MQTT_DEFAULT_HOST, prompt)
        settings.set(SETTING_MQTT_HOST, host)

        port = user_input_int("MQTT Port", MQTT_DEFAULT_PORT, PORT_MIN, PORT_MAX, prompt)
        settings.set(SETTING_MQTT_PORT, port)

        tls = user_input_bool("Encrypt with TLS", port == MQTT_TLS_PORT, prompt)
        settings.set(SETTING_MQTT_TLS, tls)

        username = user_input("MQTT UserName", "", prompt)
        settings.set(SETTING_MQTT_USERNAME, username)

        password = user_input("MQTT Password", "", prompt)
        settings.set(SETTING_MQTT_PASSWORD, password)

        return cls(host, port, tls, username, password)


def acquire_config(settings: Settings, prompt: Prompt = input) -> ConnectionConfig:
    config = ConnectionConfig.load(settings)
    if config.host:
        return config
    print(
        "MQTT host not configured. Please provide the connection details below. "
        "If the default value presented is sufficient, just press ENTER."
    )
    return ConnectionConfig.collect(settings, prompt)


# ---------------------------------------------------------------------------
# State machine
# ---------------------------------------------------------------------------


class MqttState(Enum):
    CONFIGURING = "Configuring"
    CONNECTING = "Connecting"
    CONNECTED = "Connected"
    OFFLINE = "Offline"
    ERROR = "Error"


_TRANSITIONS: dict[MqttState, frozenset[MqttState]] = {
    MqttState.CONFIGURING: frozenset({MqttState.CONNECTING}),
    MqttState.CONNECTING: frozenset(
        {MqttState.CONNECTED, MqttState.OFFLINE, MqttState.ERROR}
    ),
    # Once connected, paho reconnects on its own.
    MqttState.CONNECTED: frozenset({MqttState.OFFLINE, MqttState.ERROR}),
    MqttState.OFFLINE: frozenset({MqttState.CONFIGURING, MqttState.CONNECTED}),
    MqttState.ERROR: frozenset({MqttState.CONFIGURING, MqttState.CONNECTED}),
}


def can_transition(current: MqttState, target: MqttState) -> bool:
    return target in _TRANSITIONS[current]


def transition(current: MqttState, target: MqttState) -> MqttState:
    if not can_transition(current, target):
        raise ValueError(
            f"Invalid connection state transition: {current.value} -> {target.value}"
        )
    return target


class ConnectOutcome:
    """Result of one connection attempt, resolved by the first terminal event."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._connected = False

    def resolve(self, connected: bool) -> bool:
        """Set the outcome.  Returns False if it was already resolved."""
        with self._lock:
            if self._event.is_set():
                return False
            self._connected = connected
            self._event.set()
            return True

    @property
    def resolved(self) -> bool:
        return self._event.is_set()

    @property
    def failed(self) -> bool:
        return self._event.is_set() and not self._connected

    def wait(self, timeout: float | None = None) -> bool:
        """Block until resolved; True when the attempt ended Connected."""
        self._event.wait(timeout)
        return self._connected


# ---------------------------------------------------------------------------
# Connection manager
# ---------------------------------------------------------------------------


def _default_client_factory() -> mqtt.Client:
    return mqtt.Client(mqtt.CallbackAPIVersion.VERSION2)


class ConnectionManager:
    """Owns the broker client and keeps configuring/connecting until connected."""

    def __init__(
        self,
        settings: Settings,
        log: EventLog,
        prompt: Prompt = input,
        client_factory: Callable[[], mqtt.Client] = _default_client_factory,
        reconnect_delay: float = MQTT_RECONNECT_DELAY_SEC,
    ) -> None:
        self.settings = settings
        self.log = log
        self.prompt = prompt
        self.client_factory = client_factory
        self.reconnect_delay = reconnect_delay

        self.state = MqttState.CONFIGURING
        self.config: ConnectionConfig | None = None
        self.client: mqtt.Client | None = None

        self._lock = threading.Lock()
        self._outcome: ConnectOutcome | None = None
        self._subscriptions: list[str] = []

    # -- state ---------------------------------------------------------------

    def _enter(self, client: mqtt.Client | None, target: MqttState) -> bool:
        """Move to target on behalf of client.  Stale clients are ignored."""
        with self._lock:
            if client is not self.client or not can_transition(self.state, target):
                return False
            # A failed attempt stays failed until the next one starts.
            if self._outcome is not None and self._outcome.failed:
                return False
            reconnected = (
                target is MqttState.CONNECTED and self.state is not MqttState.CONNECTING
            )
            self.state = transition(self.state, target)
            if self._outcome is not None and target in (
                MqttState.CONNECTED,
                MqttState.OFFLINE,
                MqttState.ERROR,
            ):
                self._outcome.resolve(target is MqttState.CONNECTED)
            subscriptions = list(self._subscriptions)

        self.log.info(target.value)

        if reconnected and subscriptions and client is not None:
            self._subscribe_each(client, subscriptions)
        return True

    def _is_current(self, client: mqtt.Client) -> bool:
        """True while client belongs to the live attempt or connection."""
        with self._lock:
            if client is not self.client:
                return False
            return self._outcome is None or not self._outcome.failed

    # -- paho callbacks ------------------------------------------------------

    def _on_connect(
        self,
        client: mqtt.Client,
        userdata: object,
        flags: object,
        reason_code: object,
        properties: object | None = None,
    ) -> None:
        if reason_code == 0:
            self._enter(client, MqttState.CONNECTED)
        else:
            if self._is_current(client):
                self.log.error(f"Connection refused: {reason_code}")
            self._enter(client, MqttState.ERROR)

    def _on_connect_fail(self, client: mqtt.Client, userdata: object) -> None:
        if self._is_current(client):
            self.log.error("Unable to connect to MQTT Broker.")
        self._enter(client, MqttState.ERROR)

    def _on_disconnect(
        self,
        client: mqtt.Client,
        userdata: object,
        flags: object,
        reason_code: object,
        properties: object | None = None,
    ) -> None:
        if reason_code != 0 and self._is_current(client):
            self.log.error(f"Disconnected from MQTT Broker: {reason_code}")
        self._enter(client, MqttState.OFFLINE)

    # -- lifecycle -----------------------------------------------------------

    def _create_client(self, config: ConnectionConfig) -> mqtt.Client:
        client = self.client_factory()
        if config.username:
            client.username_pw_set(config.username, config.password or None)
        if config.tls:
            client.tls_set()
        client.on_connect = self._on_connect
        client.on_connect_fail = self._on_connect_fail
        client.on_disconnect = self._on_disconnect
        return client

    def _dispose(self) -> None:
        with self._lock:
            client, self.client = self.client, None
        if client is not None:
            client.loop_stop()
            client.disconnect()

    def connect(self) -> mqtt.Client:
        """Block until a client reports Connected, retrying without limit."""
        while True:
            with self._lock:
                if self.state is not MqttState.CONFIGURING:
                    self.state = transition(self.state, MqttState.CONFIGURING)
            self.config = acquire_config(self.settings, self.prompt)

            self._dispose()

            self.log.info("Connecting to MQTT Broker...")
            outcome = ConnectOutcome()
            client = self._create_client(self.config)
            with self._lock:
                self.client = client
                self._outcome = outcome
                self.state = transition(self.state, MqttState.CONNECTING)

            try:
                client.connect(
                    self.config.host, self.config.port, keepalive=MQTT_KEEPALIVE_SEC
                )
            except (OSError, ValueError) as e:
                self.log.error(f"Could not connect: {e}")
                self._enter(client, MqttState.ERROR)
            else:
                client.loop_start()

            if outcome.wait():
                with self._lock:
                    self._outcome = None
                return client

            self._dispose()
            if self.reconnect_delay > 0:
                time.sleep(self.reconnect_delay)

    def _subscribe_each(self, client: mqtt.Client, topics: list[str]) -> list[str]:
        """Subscribe topic by topic.  Returns the filters the client rejected."""
        rejected = []
        for topic in topics:
            try:
                client.subscribe(topic, qos=1)
            except ValueError as e:
                self.log.error(f"Unable to subscribe to {topic}: {e}")
                rejected.append(topic)
        return rejected

    def subscribe(self, *topics: str) -> None:
        """Subscribe now and again whenever the client reconnects."""
        with self._lock:
            client = self.client
        rejected = self._subscribe_each(client, list(topics)) if client else []
        with self._lock:
            for topic in topics:
                if topic not in rejected and topic not in self._subscriptions:
                    self._subscriptions.append(topic)

    def unsubscribe(self, topic: str) -> None:
        with self._lock:
            if topic in self._subscriptions:
                self._subscriptions.remove(topic)
            client = self.client
        if client is not None:
            client.unsubscribe(topic)

    def close(self) -> None:
        self._dispose()
