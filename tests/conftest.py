import base64
from types import SimpleNamespace

import pytest
from paho.mqtt.client import topic_matches_sub

from harden_mqtt.config import SETTING_MQTT_HOST, SETTING_MQTT_PORT, SETTING_MQTT_TLS
from harden_mqtt.connection import ConnectionManager
from harden_mqtt.events import get_event_log
from harden_mqtt.key_agreement import KeyPair
from harden_mqtt.settings import JsonFileSettings


def valid_filter(sub):
    """Wildcards must fill a whole level and "#" must be the last one."""
    levels = sub.split("/")
    for i, level in enumerate(levels):
        if "+" in level and level != "+":
            return False
        if "#" in level and (level != "#" or i != len(levels) - 1):
            return False
    return True


class FakeMqttClient:
    """
    Stand-in for paho's Client.

    outcome decides what happens once the network loop starts:
      "connected" -> on_connect(rc=0)
      "offline"   -> on_disconnect(rc=7)
      "refused"   -> on_connect(rc=5)
      "raise"     -> connect() raises ConnectionRefusedError
    """

    def __init__(self, outcome="connected"):
        self.outcome = outcome
        self.on_connect = None
        self.on_connect_fail = None
        self.on_disconnect = None
        self.on_message = None
        self.credentials = None
        self.tls = False
        self.connected_to = None
        self.loop_running = False
        self.disposed = False
        self.subscribed = []
        self.unsubscribed = []
        self.published = []
        self.callbacks = {}
        self.connected = False

    def username_pw_set(self, username, password=None):
        self.credentials = (username, password)

    def tls_set(self):
        self.tls = True

    def connect(self, host, port, keepalive=60):
        self.connected_to = (host, port)
        if self.outcome == "raise":
            raise ConnectionRefusedError("Connection refused")

    def loop_start(self):
        self.loop_running = True
        if self.outcome == "connected":
            self.connected = True
            self.on_connect(self, None, {}, 0, None)
        elif self.outcome == "refused":
            self.on_connect(self, None, {}, 5, None)
        elif self.outcome == "offline":
            self.on_disconnect(self, None, {}, 7, None)

    def loop_stop(self):
        self.loop_running = False

    def disconnect(self):
        self.disposed = True
        self.connected = False

    def is_connected(self):
        return self.connected

    def subscribe(self, topic, qos=0):
        if not valid_filter(topic):
            raise ValueError("Invalid subscription filter.")
        self.subscribed.append(topic)

    def unsubscribe(self, topic):
        self.unsubscribed.append(topic)

    def publish(self, topic, payload, qos=0):
        self.published.append((topic, payload, qos))

    def message_callback_add(self, sub, callback):
        self.callbacks[sub] = callback

    def message_callback_remove(self, sub):
        self.callbacks.pop(sub, None)

    def deliver(self, topic, payload):
        msg = SimpleNamespace(topic=topic, payload=payload)
        for sub, callback in self.callbacks.items():
            if topic_matches_sub(sub, topic):
                callback(self, None, msg)
                return
        if self.on_message is not None:
            self.on_message(self, None, msg)


class ScriptedPrompt:
    """Replays operator answers in order; an optional hook runs before each."""

    def __init__(self, *answers, before=None):
        self.answers = list(answers)
        self.asked = []
        self.before = before

    def __call__(self, text):
        self.asked.append(text)
        if self.before is not None:
            self.before(len(self.asked))
        if not self.answers:
            raise EOFError(f"No answer scripted for {text!r}")
        return self.answers.pop(0)


def b64(data):
    return base64.b64encode(data).decode("ascii")


def key_pair_where(accept):
    """Generate key pairs until one has a base64 public key accepted by accept."""
    while True:
        pair = KeyPair.generate()
        if accept(pair.public_b64):
            return pair


def single_level_key_pair():
    """A key pair whose public key fits in one topic level."""
    return key_pair_where(lambda key: "/" not in key and "+" not in key)


@pytest.fixture
def settings(tmp_path):
    return JsonFileSettings(tmp_path / "settings.json")


@pytest.fixture
def log():
    return get_event_log("display-1")


@pytest.fixture
def key_pair():
    return KeyPair.generate()


@pytest.fixture
def connected(settings, log):
    """A ConnectionManager connected through a FakeMqttClient."""
    settings.set_many({
        SETTING_MQTT_HOST: "localhost",
        SETTING_MQTT_PORT: 1883,
        SETTING_MQTT_TLS: False,
    })
    manager = ConnectionManager(
        settings, log, ScriptedPrompt(), client_factory=FakeMqttClient, reconnect_delay=0
    )
    manager.connect()
    return manager
