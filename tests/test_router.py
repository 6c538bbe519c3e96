from types import SimpleNamespace

from conftest import key_pair_where

from harden_mqtt.key_agreement import KeyPair
from harden_mqtt.pairing import PairingState
from harden_mqtt.router import (
    Channel,
    TopicRouter,
    channel_topics,
    is_literal_filter,
    subscription_filters,
)

PEER = KeyPair.generate()
PAIRING = PairingState(PEER.public_b64, "sensor-1")


def make_router():
    received = []
    router = TopicRouter(PAIRING, lambda channel, payload: received.append((channel, payload)))
    return router, received


def test_channel_topics():
    assert channel_topics(PAIRING) == {
        Channel.UNSTRUCTURED: "HardenMqtt/Unsecured/Unstructured/sensor-1",
        Channel.STRUCTURED: "HardenMqtt/Unsecured/Structured/sensor-1",
        Channel.INTEROPERABLE: "HardenMqtt/Unsecured/Interoperable/sensor-1",
        Channel.PUBLIC: "HardenMqtt/Unsecured/Public/" + PEER.public_b64,
        Channel.CONFIDENTIAL: "HardenMqtt/Unsecured/Confidential/" + PEER.public_b64,
    }


def test_secured_channels():
    assert [c for c in Channel if c.secured] == [Channel.PUBLIC, Channel.CONFIDENTIAL]


def test_each_channel_is_classified():
    router, _ = make_router()
    for channel, topic in channel_topics(PAIRING).items():
        assert router.classify(topic) is channel


def test_other_device_id_is_dropped():
    router, received = make_router()
    router.on_message(None, None, SimpleNamespace(
        topic="HardenMqtt/Unsecured/Unstructured/other-id", payload=b"21.5"
    ))
    assert router.classify("HardenMqtt/Unsecured/Unstructured/other-id") is None
    assert router.classify("HardenMqtt/Unsecured/Unstructured/sensor-10") is None
    assert router.classify("HardenMqtt/Unsecured/Unstructured/sensor-") is None
    assert received == []


def test_device_id_on_key_channel_is_dropped():
    router, _ = make_router()
    assert router.classify("HardenMqtt/Unsecured/Public/sensor-1") is None
    assert router.classify("HardenMqtt/Unsecured/Confidential/sensor-1") is None


def test_unknown_topic_is_dropped():
    router, _ = make_router()
    assert router.classify("HardenMqtt/Events") is None
    assert router.classify("Other/Unsecured/Unstructured/sensor-1") is None


def test_attach_subscribes_and_routes(connected):
    router, received = make_router()
    router.attach(connected)
    client = connected.client

    assert client.subscribed == list(subscription_filters(PAIRING).values())

    client.deliver("HardenMqtt/Unsecured/Structured/sensor-1", b"{}")
    client.deliver("HardenMqtt/Unsecured/Structured/other-id", b"{}")
    client.deliver("HardenMqtt/Unsecured/Confidential/" + PEER.public_b64, b"\x00\x01")

    assert received == [
        (Channel.STRUCTURED, b"{}"),
        (Channel.CONFIDENTIAL, b"\x00\x01"),
    ]


def test_wildcard_characters_are_not_literal_filters():
    assert is_literal_filter("HardenMqtt/Unsecured/Public/abc/def=")
    assert not is_literal_filter("HardenMqtt/Unsecured/Public/ab+c=")
    assert not is_literal_filter("HardenMqtt/Unsecured/Unstructured/sensor#1")


def test_key_with_plus_is_subscribed_through_the_channel_prefix(connected):
    peer = key_pair_where(lambda key: "+" in key)
    pairing = PairingState(peer.public_b64, "sensor-1")
    received = []
    router = TopicRouter(pairing, lambda channel, payload: received.append((channel, payload)))

    router.attach(connected)
    client = connected.client

    assert client.subscribed == [
        "HardenMqtt/Unsecured/Unstructured/sensor-1",
        "HardenMqtt/Unsecured/Structured/sensor-1",
        "HardenMqtt/Unsecured/Interoperable/sensor-1",
        "HardenMqtt/Unsecured/Public/#",
        "HardenMqtt/Unsecured/Confidential/#",
    ]

    client.deliver("HardenMqtt/Unsecured/Public/" + peer.public_b64, b"signed")
    client.deliver("HardenMqtt/Unsecured/Public/" + KeyPair.generate().public_b64, b"forged")
    client.deliver("HardenMqtt/Unsecured/Confidential/" + peer.public_b64 + "/x", b"nested")
    client.deliver("HardenMqtt/Unsecured/Unstructured/sensor-1", b"21.5")

    assert received == [
        (Channel.PUBLIC, b"signed"),
        (Channel.UNSTRUCTURED, b"21.5"),
    ]
