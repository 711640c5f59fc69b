"""Publicación de comandos a dispositivos por MQTT.

Topic: ``{prefix}/{deviceName}/cmd`` con QoS 2 y retain, para que el
dispositivo reciba el último comando al reconectar.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Optional

import paho.mqtt.client as mqtt

logger = logging.getLogger(__name__)

COMMAND_QOS = 2


class DeviceCommandPublisher:
    def __init__(
        self,
        broker_host: str,
        broker_port: int = 1883,
        username: Optional[str] = None,
        password: Optional[str] = None,
        topic_prefix: str = "smartcity/device",
        timeout: float = 5.0,
    ):
        self.broker_host = broker_host
        self.broker_port = broker_port
        self.username = username
        self.password = password
        self.topic_prefix = topic_prefix.rstrip("/")
        self.timeout = timeout

    def topic_for(self, device_name: str) -> str:
        return f"{self.topic_prefix}/{device_name}/cmd"

    def publish_command(self, device_name: str, command: str) -> bool:
        """Publica ``{"command": ...}``; devuelve False si no se pudo entregar."""
        if not self.broker_host:
            logger.warning("[MQTT_CMD] No broker configured, command %s not sent", command)
            return False

        topic = self.topic_for(device_name)
        client = mqtt.Client(
            client_id=f"smartaircity-cmd-{int(time.time() * 1000)}",
            protocol=mqtt.MQTTv311,
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
        )
        if self.username and self.password:
            client.username_pw_set(self.username, self.password)

        try:
            client.connect(self.broker_host, self.broker_port, keepalive=30)
            client.loop_start()
            info = client.publish(topic, json.dumps({"command": command}), qos=COMMAND_QOS, retain=True)
            info.wait_for_publish(timeout=self.timeout)
            if not info.is_published():
                logger.error("[MQTT_CMD] Publish to %s timed out", topic)
                return False
            logger.info("[MQTT_CMD] Published %s to %s", command, topic)
            return True
        except Exception as e:
            logger.error("[MQTT_CMD] Publish to %s failed: %s", topic, e)
            return False
        finally:
            try:
                client.loop_stop()
                client.disconnect()
            except Exception as e:
                logger.debug("[MQTT_CMD] Error closing client: %s", e)
