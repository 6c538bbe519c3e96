"""
Routing of sensor data from the paired device.

Five channels, each on its own topic scoped to the paired sensor:

    Unstructured   HardenMqtt/Unsecured/Unstructured/<device id>
    Structured     HardenMqtt/Unsecured/Structured/<device id>
    Interoperable  HardenMqtt/Unsecured/Interoperable/<device id>
    Public         HardenMqtt/Unsecured/Public/<public key>
    Confidential   HardenMqtt/Unsecured/Confidential/<public key>

On the first three the sender is identified by topic name only.  Public is
signed and Confidential signed and encrypted by the sensor with the paired
key material; verifying and decrypting them is up to the handler.

A delivery is handed on only when its topic suffix equals the paired
identifier exactly.  Anything else is dropped without a trace.

Base64 keys may contain "+", which is not allowed inside a topic filter
level.  Such a channel is subscribed through its prefix and "#" instead and
the exact-suffix check above does the filtering.
"""

from __future__ import annotations

from enum import Enum
from typing import Callable

import paho.mqtt.client as mqtt

from harden_mqtt.config import (
    TOPIC_CONFIDENTIAL_PREFIX,
    TOPIC_INTEROPERABLE_PREFIX,
    TOPIC_PUBLIC_PREFIX,
    TOPIC_STRUCTURED_PREFIX,
    TOPIC_UNSTRUCTURED_PREFIX,
)
from harden_mqtt.connection import ConnectionManager
from harden_mqtt.pairing import PairingState


class Channel(Enum):
    UNSTRUCTURED = TOPIC_UNSTRUCTURED_PREFIX
    STRUCTURED = TOPIC_STRUCTURED_PREFIX
    INTEROPERABLE = TOPIC_INTEROPERABLE_PREFIX
    PUBLIC = TOPIC_PUBLIC_PREFIX
    CONFIDENTIAL = TOPIC_CONFIDENTIAL_PREFIX

    @property
    def prefix(self) -> str:
        return self.value

    @property
    def keyed_by_public_key(self) -> bool:
        return self in (Channel.PUBLIC, Channel.CONFIDENTIAL)

    @property
    def secured(self) -> bool:
        return self.keyed_by_public_key

    def suffix_for(self, pairing: PairingState) -> str:
        return pairing.public_key if self.keyed_by_public_key else pairing.device_id

    def topic_for(self, pairing: PairingState) -> str:
        return self.prefix + self.suffix_for(pairing)


def channel_topics(pairing: PairingState) -> dict[Channel, str]:
    return {channel: channel.topic_for(pairing) for channel in Channel}


def is_literal_filter(topic: str) -> bool:
    """True when topic can be subscribed to as-is and matches only itself."""
    return "+" not in topic and "#" not in topic


def subscription_filters(pairing: PairingState) -> dict[Channel, str]:
    filters = {}
    for channel, topic in channel_topics(pairing).items():
        filters[channel] = topic if is_literal_filter(topic) else channel.prefix + "#"
    return filters


Handler = Callable[[Channel, bytes], None]


class TopicRouter:
    def __init__(self, pairing: PairingState, handler: Handler) -> None:
        self.pairing = pairing
        self.handler = handler
        self.topics = channel_topics(pairing)
        self.filters = subscription_filters(pairing)

    def classify(self, topic: str) -> Channel | None:
        for channel in Channel:
            if topic.startswith(channel.prefix):
                if topic[len(channel.prefix):] == channel.suffix_for(self.pairing):
                    return channel
                return None
        return None

    def on_message(
        self, client: mqtt.Client, userdata: object, msg: mqtt.MQTTMessage
    ) -> None:
        channel = self.classify(msg.topic)
        if channel is not None:
            self.handler(channel, msg.payload)

    def attach(self, connection: ConnectionManager) -> None:
        """Route the client's deliveries here and subscribe to the five channels."""
        connection.client.on_message = self.on_message
        connection.subscribe(*self.filters.values())
