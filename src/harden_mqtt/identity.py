"""Device identity: the operator-chosen device id and the long-term key pair."""

from __future__ import annotations

import base64
import binascii

from harden_mqtt.config import SETTING_DEVICE_ID, SETTING_SECRET
from harden_mqtt.console import Prompt, user_input
from harden_mqtt.events import EventLog
from harden_mqtt.key_agreement import KeyPair
from harden_mqtt.settings import Settings


def get_or_create_device_id(
    settings: Settings, log: EventLog, prompt: Prompt = input
) -> str:
    device_id = settings.get(SETTING_DEVICE_ID, "")
    if device_id:
        log.info(f"Using Device ID: {device_id}")
        return device_id

    print(
        "Device ID has not been configured. Please provide the Device ID "
        "that will be used by this application."
    )
    while not device_id:
        device_id = user_input("Device ID", "", prompt)
    settings.set(SETTING_DEVICE_ID, device_id)
    return device_id


def _load_key_pair(encoded: str) -> KeyPair | None:
    if not encoded:
        return None
    try:
        return KeyPair(base64.b64decode(encoded, validate=True))
    except (binascii.Error, ValueError):
        return None


def get_or_create_key_pair(settings: Settings, log: EventLog) -> KeyPair:
    """
    Load the key pair from settings, or generate and persist a new one.

    A stored secret that does not decode is handled like a missing one.  A
    fresh secret is persisted before its public key is derived and logged.
    """
    key_pair = _load_key_pair(settings.get(SETTING_SECRET, ""))
    if key_pair is None:
        log.info("Generating new keys.")
        secret_b64 = KeyPair.generate().secret_b64
        settings.set(SETTING_SECRET, secret_b64)
        key_pair = KeyPair(base64.b64decode(secret_b64))
    else:
        log.info("Loaded existing keys.")

    log.info(f"Public key: {key_pair.public_b64}")
    return key_pair
