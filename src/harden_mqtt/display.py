"""
Display: receives sensor values published via an MQTT broker by its paired sensor.

Start-up order:
  1. Device id and key pair (prompted / generated on first run)
  2. Broker connection (prompted on first run, retried until connected)
  3. Pairing (discovery + operator choice on first run)
  4. Subscription to the five data channels of the paired sensor

Then idles until Ctrl+C.  All state lives in the settings file
(HARDEN_MQTT_SETTINGS, default settings.json).
"""

from __future__ import annotations

import signal
import sys
import threading
import time
from typing import Callable

import paho.mqtt.client as mqtt

from harden_mqtt import events
from harden_mqtt.config import IDLE_POLL_SEC, SETTINGS_FILE
from harden_mqtt.connection import ConnectionManager
from harden_mqtt.console import Prompt
from harden_mqtt.identity import get_or_create_device_id, get_or_create_key_pair
from harden_mqtt.pairing import PairingEngine, PairingState
from harden_mqtt.router import Channel, TopicRouter
from harden_mqtt.settings import JsonFileSettings, Settings


class Display:
    def __init__(
        self,
        settings: Settings,
        prompt: Prompt = input,
        client_factory: Callable[[], mqtt.Client] | None = None,
        reconnect_delay: float | None = None,
    ) -> None:
        self.settings = settings
        self.prompt = prompt
        self.client_factory = client_factory
        self.reconnect_delay = reconnect_delay

        self.log = events.get_event_log()
        self.running = True
        self.connection: ConnectionManager | None = None
        self.pairing: PairingState | None = None
        self.router: TopicRouter | None = None
        self._event_sink: events.MqttEventSink | None = None
        self._previous_sigint: object = None

    def stop(self, *_: object) -> None:
        self.running = False

    def _install_interrupt_handler(self) -> None:
        if threading.current_thread() is threading.main_thread():
            self._previous_sigint = signal.signal(signal.SIGINT, self.stop)

    def _restore_interrupt_handler(self) -> None:
        if self._previous_sigint is not None:
            signal.signal(signal.SIGINT, self._previous_sigint)
            self._previous_sigint = None

    def _connection_manager(self) -> ConnectionManager:
        kwargs = {}
        if self.client_factory is not None:
            kwargs["client_factory"] = self.client_factory
        if self.reconnect_delay is not None:
            kwargs["reconnect_delay"] = self.reconnect_delay
        return ConnectionManager(self.settings, self.log, self.prompt, **kwargs)

    def show(self, channel: Channel, payload: bytes) -> None:
        # Payload decoding, signature checks and decryption are done by the
        # channel codecs; here the reception itself is reported.
        self.log.info(f"{channel.name.title()} reception: {len(payload)} bytes")

    def run(self) -> int:
        exit_code = 0
        try:
            self.log.info("Display application starting...")

            device_id = get_or_create_device_id(self.settings, self.log, self.prompt)
            self.log = events.get_event_log(device_id)
            key_pair = get_or_create_key_pair(self.settings, self.log)

            self.connection = self._connection_manager()
            client = self.connection.connect()

            self._event_sink = events.register_mqtt_sink(client)
            self.log.info("Display connected to MQTT.")

            engine = PairingEngine(
                self.connection, key_pair, self.settings, self.log, self.prompt
            )
            self.pairing = engine.ensure_paired()

            self.router = TopicRouter(self.pairing, self.show)
            self.router.attach(self.connection)

            self.log.info(
                "Display application started... "
                "Press CTRL+C to terminate the application."
            )
            self._install_interrupt_handler()

            while self.running:
                time.sleep(IDLE_POLL_SEC)
        except KeyboardInterrupt:
            pass
        except Exception:
            self.log.alert("Display application failed.", exc_info=True)
            exit_code = 1
        finally:
            self._restore_interrupt_handler()
            self.log.info("Display application stopping...")

            if self._event_sink is not None:
                events.unregister_sink(self._event_sink)
                self._event_sink = None

            if self.connection is not None:
                self.connection.close()

            self.settings.flush()

        return exit_code


def main() -> None:
    events.register_console_sink()
    display = Display(JsonFileSettings(SETTINGS_FILE))
    sys.exit(display.run())


if __name__ == "__main__":
    main()
