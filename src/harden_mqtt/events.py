"""
Event logging for the display.

Events go through the stdlib logging tree under the "harden_mqtt" logger.
Two severities are added on top of the standard ones:
  - NOTICE : something the operator should look at (e.g. a pairing candidate)
  - ALERT  : an unhandled fault that stops the application

Every event carries an "object" (the local device id) so that events from
several devices can be told apart on the shared events topic.

Sinks:
  - console sink : registered at start-up
  - MQTT sink    : registered once the broker connection is up; publishes
                   each event as JSON to HardenMqtt/Events
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone

import paho.mqtt.client as mqtt

from harden_mqtt.config import LOG_LEVEL, TOPIC_EVENTS

LOGGER_NAME = "harden_mqtt"

NOTICE = 25
ALERT = 60

logging.addLevelName(NOTICE, "NOTICE")
logging.addLevelName(ALERT, "ALERT")


class EventLog(logging.LoggerAdapter):
    """Logger adapter that tags every record with the device id."""

    def __init__(self, logger: logging.Logger, device_id: str = "") -> None:
        super().__init__(logger, {"object": device_id})

    @property
    def device_id(self) -> str:
        return self.extra["object"]

    def notice(self, msg: str, *args, **kwargs) -> None:
        self.log(NOTICE, msg, *args, **kwargs)

    def alert(self, msg: str, *args, **kwargs) -> None:
        self.log(ALERT, msg, *args, **kwargs)


def get_event_log(device_id: str = "") -> EventLog:
    return EventLog(logging.getLogger(LOGGER_NAME), device_id)


class _ObjectDefault(logging.Filter):
    # Records from plain module loggers have no object attached.
    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "object"):
            record.object = ""
        return True


def register_console_sink(level: str | int = LOG_LEVEL) -> logging.Handler:
    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(_ObjectDefault())
    handler.setFormatter(
        logging.Formatter("%(asctime)s %(levelname)-8s [%(object)s] %(message)s")
    )
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    logger.addHandler(handler)
    return handler


class MqttEventSink(logging.Handler):
    """Publishes events to the broker so peers can follow what the display does."""

    def __init__(
        self, client: mqtt.Client, topic: str = TOPIC_EVENTS, qos: int = 1
    ) -> None:
        super().__init__()
        self.client = client
        self.topic = topic
        self.qos = qos
        self.addFilter(_ObjectDefault())

    def emit(self, record: logging.LogRecord) -> None:
        # QoS 1 messages queue up in the client while it is offline.
        if not self.client.is_connected():
            return
        try:
            payload = json.dumps({
                "timestamp": datetime.fromtimestamp(
                    record.created, tz=timezone.utc
                ).isoformat(),
                "type": record.levelname,
                "object": record.object,
                "message": record.getMessage(),
            })
            self.client.publish(self.topic, payload, qos=self.qos)
        except Exception:
            self.handleError(record)


def register_mqtt_sink(client: mqtt.Client, topic: str = TOPIC_EVENTS) -> MqttEventSink:
    sink = MqttEventSink(client, topic)
    logging.getLogger(LOGGER_NAME).addHandler(sink)
    return sink


def unregister_sink(handler: logging.Handler) -> None:
    logging.getLogger(LOGGER_NAME).removeHandler(handler)
    handler.close()
