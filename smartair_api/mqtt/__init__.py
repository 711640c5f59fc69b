"""Clientes MQTT.

Estructura modular:
- receiver.py: receptor principal (sensor MQ135 -> AirQuality)
- external_subscriber.py: un cliente por broker externo registrado
- publisher.py: comandos on/off a dispositivos
"""

from .external_subscriber import (
    ExternalMqttClient,
    ExternalMqttManager,
    build_entity,
    extract_measurements,
    get_manager,
    probe_broker,
    start_manager,
    stop_manager,
)
from .publisher import DeviceCommandPublisher
from .receiver import (
    MQTTReceiver,
    get_receiver,
    start_receiver,
    stop_receiver,
)

__all__ = [
    "DeviceCommandPublisher",
    "ExternalMqttClient",
    "ExternalMqttManager",
    "MQTTReceiver",
    "build_entity",
    "extract_measurements",
    "get_manager",
    "get_receiver",
    "probe_broker",
    "start_manager",
    "start_receiver",
    "stop_manager",
    "stop_receiver",
]
