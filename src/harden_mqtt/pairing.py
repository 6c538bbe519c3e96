"""
Pairing: associate this display with exactly one remote sensor.

Unpaired displays listen on HardenMqtt/Secured/Pairing/Sensor/+ where
sensors ready to pair advertise themselves:

    topic   = HardenMqtt/Secured/Pairing/Sensor/<base64 public key>
    payload = UTF-8 device id of the sensor

Every advertisement with a valid key is numbered in discovery order and shown
to the operator, who then picks a number or types a public key directly.  The
choice is persisted (Pair.Ed25519.Public + Pair.ID) and discovery stops for
good.  Re-pairing requires clearing those settings by hand.

Advertisements arrive on paho's network thread while the operator types on
the main thread; both lookup tables are guarded by one lock.
"""

from __future__ import annotations

import base64
import binascii
import threading
from dataclasses import dataclass

import paho.mqtt.client as mqtt

from harden_mqtt.config import (
    MAX_ADVERTISEMENT_LEN,
    MAX_PAIRING_CANDIDATES,
    SETTING_PAIR_ID,
    SETTING_PAIR_PUBLIC,
    TOPIC_PAIRING,
    TOPIC_PAIRING_PREFIX,
)
from harden_mqtt.connection import ConnectionManager
from harden_mqtt.console import Prompt, user_input
from harden_mqtt.events import EventLog
from harden_mqtt.key_agreement import KeyPair, validate_public_key
from harden_mqtt.settings import Settings


@dataclass(frozen=True)
class PairingCandidate:
    index: int
    public_key: str
    device_id: str


@dataclass(frozen=True)
class PairingState:
    public_key: str
    device_id: str

    @property
    def public_key_bytes(self) -> bytes:
        return base64.b64decode(self.public_key, validate=True)


def _decode_public_key(encoded: str) -> bytes:
    """Strict base64 decode plus key validation.  Raises ValueError."""
    key = base64.b64decode(encoded, validate=True)
    validate_public_key(key)
    return key


def load_pairing(settings: Settings) -> PairingState | None:
    """Return the persisted pairing, or None unless both halves are valid."""
    public_key = settings.get(SETTING_PAIR_PUBLIC, "")
    device_id = settings.get(SETTING_PAIR_ID, "")
    if not public_key or not device_id:
        return None
    try:
        _decode_public_key(public_key)
    except (binascii.Error, ValueError):
        return None
    return PairingState(public_key, device_id)


def save_pairing(settings: Settings, state: PairingState) -> None:
    settings.set_many({
        SETTING_PAIR_PUBLIC: state.public_key,
        SETTING_PAIR_ID: state.device_id,
    })


class CandidateRegistry:
    """Sensors that advertised themselves for pairing, numbered from 1."""

    def __init__(
        self, key_pair: KeyPair, max_candidates: int = MAX_PAIRING_CANDIDATES
    ) -> None:
        self._key_pair = key_pair
        self._max_candidates = max_candidates
        self._lock = threading.Lock()
        self._nr_to_key: dict[int, str] = {}
        self._key_to_device_id: dict[str, str] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._nr_to_key)

    def _known_or_full(self, key: str) -> bool:
        return (
            key in self._key_to_device_id
            or len(self._nr_to_key) >= self._max_candidates
        )

    def register(self, topic: str, payload: bytes) -> PairingCandidate | None:
        """
        Record an advertisement.  Returns the new candidate, or None when it
        is dropped (wrong topic, oversized, duplicate key, bad key material).
        """
        if not topic.startswith(TOPIC_PAIRING_PREFIX):
            return None
        key = topic[len(TOPIC_PAIRING_PREFIX):]
        if not key or len(key) >= MAX_ADVERTISEMENT_LEN:
            return None
        if len(payload) >= MAX_ADVERTISEMENT_LEN:
            return None

        with self._lock:
            if self._known_or_full(key):
                return None

        try:
            device_id = payload.decode("utf-8")
        except UnicodeDecodeError:
            return None
        if not device_id:
            return None

        # Agreement runs outside the lock; the key is re-checked below.
        try:
            self._key_pair.shared_key(base64.b64decode(key, validate=True))
        except (binascii.Error, ValueError):
            return None

        with self._lock:
            if self._known_or_full(key):
                return None
            index = len(self._nr_to_key) + 1
            self._nr_to_key[index] = key
            self._key_to_device_id[key] = device_id
        return PairingCandidate(index, key, device_id)

    def resolve(self, index: int) -> PairingCandidate | None:
        with self._lock:
            key = self._nr_to_key.get(index)
            if key is None:
                return None
            return PairingCandidate(index, key, self._key_to_device_id[key])

    def device_id_for(self, public_key: str) -> str | None:
        with self._lock:
            return self._key_to_device_id.get(public_key)

    def candidates(self) -> list[PairingCandidate]:
        with self._lock:
            return [
                PairingCandidate(nr, key, self._key_to_device_id[key])
                for nr, key in sorted(self._nr_to_key.items())
            ]


class PairingEngine:
    """Loads the persisted pairing or runs discovery and operator selection."""

    def __init__(
        self,
        connection: ConnectionManager,
        key_pair: KeyPair,
        settings: Settings,
        log: EventLog,
        prompt: Prompt = input,
    ) -> None:
        self.connection = connection
        self.settings = settings
        self.log = log
        self.prompt = prompt
        self.registry = CandidateRegistry(key_pair)

    def ensure_paired(self) -> PairingState:
        state = load_pairing(self.settings)
        if state is not None:
            self.log.info(f"Paired to: {state.public_key} ({state.device_id})")
            return state

        self.log.info("Not paired to any device.")
        client = self.connection.client
        client.message_callback_add(TOPIC_PAIRING, self._on_advertisement)
        self.connection.subscribe(TOPIC_PAIRING)
        try:
            return self.select()
        finally:
            client.message_callback_remove(TOPIC_PAIRING)
            self.connection.unsubscribe(TOPIC_PAIRING)

    def _on_advertisement(
        self, client: mqtt.Client, userdata: object, msg: mqtt.MQTTMessage
    ) -> None:
        candidate = self.registry.register(msg.topic, msg.payload)
        if candidate is not None:
            self.log.notice(
                f"Device ready to be paired: {candidate.index}. "
                f"{candidate.device_id}: {candidate.public_key}"
            )

    def resolve_selection(self, entry: str) -> PairingState:
        """
        Turn operator input into a pairing.

        entry is a candidate number or a base64 public key.  A number with no
        candidate behind it is parsed as a key like any other input.  Raises
        ValueError when the result is not valid key material.
        """
        public_key = entry.strip()
        device_id = None
        try:
            candidate = self.registry.resolve(int(public_key))
        except ValueError:
            candidate = None
        if candidate is not None:
            public_key, device_id = candidate.public_key, candidate.device_id

        _decode_public_key(public_key)

        if device_id is None:
            device_id = self.registry.device_id_for(public_key)
        while not device_id:
            device_id = user_input("Device ID of remote device", "", self.prompt)
        return PairingState(public_key, device_id)

    def select(self) -> PairingState:
        while True:
            entry = user_input("Public Key of remote device", "", self.prompt)
            try:
                state = self.resolve_selection(entry)
            except (binascii.Error, ValueError):
                self.log.error("Invalid public key provided during pairing.")
                continue

            save_pairing(self.settings, state)
            self.log.info(f"Pairing to {state.public_key} ({state.device_id})")
            return state
