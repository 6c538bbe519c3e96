"""Configuration from environment variables, settings keys and topic names."""

import os

from dotenv import load_dotenv

load_dotenv()

SETTINGS_FILE = os.environ.get("HARDEN_MQTT_SETTINGS", "settings.json")
LOG_LEVEL = os.environ.get("HARDEN_MQTT_LOG_LEVEL", "INFO")

# Defaults offered when the broker connection is configured interactively
MQTT_DEFAULT_HOST = os.environ.get("MQTT_BROKER_HOST", "")
MQTT_DEFAULT_PORT = int(os.environ.get("MQTT_BROKER_PORT", "8883"))
MQTT_TLS_PORT = 8883
MQTT_KEEPALIVE_SEC = 60
MQTT_RECONNECT_DELAY_SEC = float(os.environ.get("MQTT_RECONNECT_DELAY_SEC", "5"))

# Persisted settings keys
SETTING_DEVICE_ID = "Device.ID"
SETTING_SECRET = "ed25519.p"
SETTING_PAIR_PUBLIC = "Pair.Ed25519.Public"
SETTING_PAIR_ID = "Pair.ID"
SETTING_MQTT_HOST = "MQTT.Host"
SETTING_MQTT_PORT = "MQTT.Port"
SETTING_MQTT_TLS = "MQTT.Tls"
SETTING_MQTT_USERNAME = "MQTT.UserName"
SETTING_MQTT_PASSWORD = "MQTT.Password"

# Topics
TOPIC_EVENTS = "HardenMqtt/Events"
TOPIC_PAIRING_PREFIX = "HardenMqtt/Secured/Pairing/Sensor/"
TOPIC_PAIRING = TOPIC_PAIRING_PREFIX + "+"
TOPIC_UNSTRUCTURED_PREFIX = "HardenMqtt/Unsecured/Unstructured/"
TOPIC_STRUCTURED_PREFIX = "HardenMqtt/Unsecured/Structured/"
TOPIC_INTEROPERABLE_PREFIX = "HardenMqtt/Unsecured/Interoperable/"
TOPIC_PUBLIC_PREFIX = "HardenMqtt/Unsecured/Public/"
TOPIC_CONFIDENTIAL_PREFIX = "HardenMqtt/Unsecured/Confidential/"

# Pairing advertisements: key (topic suffix) and device id (payload) must be
# shorter than this.
MAX_ADVERTISEMENT_LEN = 100
MAX_PAIRING_CANDIDATES = 256

IDLE_POLL_SEC = 0.1
