from __future__ import annotations

import logging
import ssl
from typing import Any

import paho.mqtt.client as mqtt

from db2_tap.config import MqttConfig

STATUS_QOS = 1
ONLINE = "online"
OFFLINE = "offline"


class MqttPublisher:
    """Publishes agent payloads to ``<base_topic>/<agent>``.

    Availability lives on ``<base_topic>/status`` as a retained message; the
    broker flips it to ``offline`` through the will when the process dies.
    """

    def __init__(self, config: MqttConfig) -> None:
        self.config = config
        self.logger = logging.getLogger(self.__class__.__name__)
        self._connected = False

        client = mqtt.Client(
            mqtt.CallbackAPIVersion.VERSION2,
            client_id=config.client_id,
            protocol=mqtt.MQTTv311,
        )
        client.on_connect = self._on_connect
        client.on_disconnect = self._on_disconnect
        if config.username:
            client.username_pw_set(config.username, config.password)
        if config.tls_enabled:
            client.tls_set(ca_certs=config.ca_cert, cert_reqs=ssl.CERT_REQUIRED)
        client.will_set(
            self.availability_topic, payload=OFFLINE, qos=STATUS_QOS, retain=True
        )
        client.reconnect_delay_set(min_delay=1, max_delay=120)
        self.client = client

    @property
    def availability_topic(self) -> str:
        return f"{self.config.base_topic}/status"

    @property
    def connected(self) -> bool:
        return self._connected

    def metrics_topic(self, agent_name: str) -> str:
        return f"{self.config.base_topic}/{agent_name}"

    def _on_connect(
        self,
        client: mqtt.Client,
        userdata: Any,
        flags: Any,
        reason_code: Any,
        properties: Any = None,
    ) -> None:
        self._connected = reason_code == 0
        if not self._connected:
            self.logger.error("MQTT broker refused connection: %s", reason_code)
            return
        self.logger.info("MQTT broker %s:%s accepted connection", self.config.host, self.config.port)
        self._send(self.availability_topic, ONLINE, STATUS_QOS, True)

    def _on_disconnect(
        self,
        client: mqtt.Client,
        userdata: Any,
        flags: Any,
        reason_code: Any,
        properties: Any = None,
    ) -> None:
        self._connected = False
        if reason_code == 0:
            self.logger.info("MQTT session closed")
        else:
            self.logger.warning("MQTT connection lost (%s), reconnecting", reason_code)

    def _send(self, topic: str, payload: str, qos: int, retain: bool) -> bool:
        result = self.client.publish(topic, payload=payload, qos=qos, retain=retain)
        if result.rc != mqtt.MQTT_ERR_SUCCESS:
            self.logger.error("Publishing to %s failed with code %s", topic, result.rc)
            return False
        return True

    def connect(self) -> None:
        self.logger.info("Connecting to MQTT broker %s:%s", self.config.host, self.config.port)
        self.client.connect(self.config.host, self.config.port, keepalive=self.config.keepalive)
        self.client.loop_start()

    def disconnect(self) -> None:
        if self._connected:
            self._send(self.availability_topic, OFFLINE, STATUS_QOS, True)
        self.client.loop_stop()
        self.client.disconnect()
        self.logger.info("Disconnected from MQTT broker")

    def publish_status(self, status: str) -> bool:
        """Overwrite the retained availability message, e.g. with ``maintenance``."""
        self.logger.info("Setting %s to %r", self.availability_topic, status)
        return self._send(self.availability_topic, status, STATUS_QOS, True)

    def publish(self, agent_name: str, payload: str) -> bool:
        topic = self.metrics_topic(agent_name)
        if not self._connected:
            self.logger.warning("Broker offline, %s payload left to the client queue", agent_name)
        self.logger.debug("Publishing %d bytes to %s", len(payload), topic)
        return self._send(topic, payload, self.config.qos, self.config.retain)
