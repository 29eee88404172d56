"""Thin paho-mqtt wrapper for the notifier.

Subscriptions are remembered and replayed from the connect callback, so a
broker restart (or subscribing before the first connect completes) does not
silently drop the command topic.
"""

from __future__ import annotations

import logging
import ssl
import threading
from collections.abc import Callable

import paho.mqtt.client as mqtt

from .config import MqttConfig

LOGGER = logging.getLogger("calwake.mqtt")

MessageHandler = Callable[[str], None]


class NotifierMqtt:
    def __init__(self, config: MqttConfig, logger: logging.Logger | None = None) -> None:
        self.config = config
        self._logger = logger or LOGGER
        self._client: mqtt.Client | None = None
        self._lock = threading.Lock()
        self._handlers: dict[str, MessageHandler] = {}

    @property
    def enabled(self) -> bool:
        return bool(self.config.host)

    def connect(self) -> bool:
        if not self.enabled:
            self._logger.info("[mqtt] MQTT host not configured; notifications will only be logged")
            return False
        with self._lock:
            if self._client is not None:
                return True
            client = mqtt.Client(
                callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
                client_id=f"calwake-{self.config.topic_base.replace('/', '-')}",
                clean_session=True,
            )
            if self.config.username:
                client.username_pw_set(self.config.username, self.config.password or "")
            if self.config.tls_enabled:
                client.tls_set(
                    ca_certs=self.config.ca_cert,
                    certfile=self.config.cert,
                    keyfile=self.config.key,
                    tls_version=ssl.PROTOCOL_TLS_CLIENT,
                )
            client.on_connect = self._on_connect
            client.on_disconnect = self._on_disconnect
            try:
                client.connect(self.config.host, self.config.port, keepalive=30)
            except (OSError, ValueError) as exc:
                self._logger.warning("[mqtt] Failed to connect to %s:%s: %s", self.config.host, self.config.port, exc)
                return False
            client.loop_start()
            self._client = client
        return True

    def disconnect(self) -> None:
        with self._lock:
            client = self._client
            self._client = None
        if client is not None:
            client.loop_stop()
            client.disconnect()

    def is_connected(self) -> bool:
        client = self._client
        return bool(client is not None and client.is_connected())

    def publish(self, topic: str, payload: str, retain: bool = False, qos: int = 0) -> bool:
        client = self._client
        if client is None:
            return False
        info = client.publish(topic, payload=payload, qos=qos, retain=retain)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            self._logger.debug("[mqtt] Publish to %s failed (rc=%s)", topic, info.rc)
            return False
        return True

    def subscribe(self, topic: str, on_message: MessageHandler) -> None:
        """Register ``on_message`` for ``topic``; active now if connected, otherwise on connect."""
        self._handlers[topic] = on_message
        client = self._client
        if client is not None:
            self._attach(client, topic, on_message)

    def _attach(self, client: mqtt.Client, topic: str, on_message: MessageHandler) -> None:
        def _callback(_client, _userdata, message):  # type: ignore[no-untyped-def]
            try:
                on_message(message.payload.decode("utf-8", errors="ignore"))
            except Exception:
                self._logger.exception("[mqtt] Handler for '%s' failed", topic)

        client.message_callback_add(topic, _callback)
        result, _mid = client.subscribe(topic, qos=1)
        if result != mqtt.MQTT_ERR_SUCCESS:
            self._logger.warning("[mqtt] Failed to subscribe to %s (rc=%s)", topic, result)

    def _on_connect(self, client, _userdata, _flags, reason_code, _properties=None):  # type: ignore[no-untyped-def]
        if getattr(reason_code, "is_failure", False):
            self._logger.warning("[mqtt] Broker refused connection: %s", reason_code)
            return
        self._logger.info("[mqtt] Connected to %s:%s", self.config.host, self.config.port)
        for topic, handler in list(self._handlers.items()):
            self._attach(client, topic, handler)

    def _on_disconnect(self, _client, _userdata, _flags, reason_code, _properties=None):  # type: ignore[no-untyped-def]
        self._logger.info("[mqtt] Disconnected from broker (%s)", reason_code)
