"""Tests for the MQTT wrapper (calwake/engine/mqtt.py)."""

from __future__ import annotations

from dataclasses import replace
from unittest.mock import MagicMock, Mock, patch

import paho.mqtt.client as mqtt

from calwake.engine.mqtt import NotifierMqtt

# Connection Tests


@patch("paho.mqtt.client.Client")
def test_connect_success(mock_client_class, mqtt_config, mock_logger, mock_mqtt_client):
    mock_client_class.return_value = mock_mqtt_client

    client = NotifierMqtt(mqtt_config, mock_logger)
    assert client.connect() is True

    call_kwargs = mock_client_class.call_args.kwargs
    assert call_kwargs["client_id"] == "calwake-calwake-test-host"
    assert call_kwargs["callback_api_version"] == mqtt.CallbackAPIVersion.VERSION2
    mock_mqtt_client.connect.assert_called_once_with("localhost", 1883, keepalive=30)
    mock_mqtt_client.loop_start.assert_called_once()
    assert client.is_connected()


@patch("paho.mqtt.client.Client")
def test_connect_with_auth_and_tls(mock_client_class, mqtt_config, mock_logger, mock_mqtt_client):
    mock_client_class.return_value = mock_mqtt_client
    config = replace(
        mqtt_config,
        username="user",
        password="secret",
        tls_enabled=True,
        ca_cert="/path/to/ca.crt",
        cert="/path/to/client.crt",
        key="/path/to/client.key",
    )

    NotifierMqtt(config, mock_logger).connect()

    mock_mqtt_client.username_pw_set.assert_called_once_with("user", "secret")
    tls_kwargs = mock_mqtt_client.tls_set.call_args.kwargs
    assert tls_kwargs["ca_certs"] == "/path/to/ca.crt"
    assert tls_kwargs["certfile"] == "/path/to/client.crt"
    assert tls_kwargs["keyfile"] == "/path/to/client.key"


def test_connect_without_host(mqtt_config, mock_logger):
    client = NotifierMqtt(replace(mqtt_config, host=None), mock_logger)

    assert client.connect() is False
    assert client.enabled is False
    assert client.publish("topic", "payload") is False


@patch("paho.mqtt.client.Client")
def test_connect_failure_is_logged(mock_client_class, mqtt_config, mock_logger):
    instance = MagicMock()
    instance.connect.side_effect = ConnectionRefusedError("Connection refused")
    mock_client_class.return_value = instance

    client = NotifierMqtt(mqtt_config, mock_logger)

    assert client.connect() is False
    mock_logger.warning.assert_called_once()
    assert not client.is_connected()


@patch("paho.mqtt.client.Client")
def test_connect_idempotent(mock_client_class, mqtt_config, mock_logger, mock_mqtt_client):
    mock_client_class.return_value = mock_mqtt_client
    client = NotifierMqtt(mqtt_config, mock_logger)

    client.connect()
    client.connect()

    mock_client_class.assert_called_once()


@patch("paho.mqtt.client.Client")
def test_disconnect(mock_client_class, mqtt_config, mock_logger, mock_mqtt_client):
    mock_client_class.return_value = mock_mqtt_client
    client = NotifierMqtt(mqtt_config, mock_logger)
    client.connect()

    client.disconnect()

    mock_mqtt_client.loop_stop.assert_called_once()
    mock_mqtt_client.disconnect.assert_called_once()
    assert not client.is_connected()


# Publish / Subscribe Tests


@patch("paho.mqtt.client.Client")
def test_publish_reports_failure_rc(mock_client_class, mqtt_config, mock_logger, mock_mqtt_client):
    mock_client_class.return_value = mock_mqtt_client
    client = NotifierMqtt(mqtt_config, mock_logger)
    client.connect()

    assert client.publish("a/b", "{}", retain=True, qos=1) is True
    mock_mqtt_client.publish.assert_called_with("a/b", payload="{}", qos=1, retain=True)

    mock_mqtt_client.publish.return_value.rc = mqtt.MQTT_ERR_NO_CONN
    assert client.publish("a/b", "{}") is False


@patch("paho.mqtt.client.Client")
def test_subscribe_before_connect_is_replayed_on_connect(mock_client_class, mqtt_config, mock_logger, mock_mqtt_client):
    mock_client_class.return_value = mock_mqtt_client
    client = NotifierMqtt(mqtt_config, mock_logger)
    handler = Mock()

    client.subscribe("calwake/test-host/notifications/command", handler)
    mock_mqtt_client.subscribe.assert_not_called()

    client.connect()
    reason = Mock(is_failure=False)
    client._on_connect(mock_mqtt_client, None, None, reason, None)

    mock_mqtt_client.subscribe.assert_called_once_with("calwake/test-host/notifications/command", qos=1)
    topic, callback = mock_mqtt_client.message_callback_add.call_args.args
    callback(mock_mqtt_client, None, Mock(payload=b'{"action": "refresh"}'))
    handler.assert_called_once_with('{"action": "refresh"}')


@patch("paho.mqtt.client.Client")
def test_subscriber_errors_are_contained(mock_client_class, mqtt_config, mock_logger, mock_mqtt_client):
    mock_client_class.return_value = mock_mqtt_client
    client = NotifierMqtt(mqtt_config, mock_logger)
    client.connect()

    client.subscribe("x/y", Mock(side_effect=RuntimeError("boom")))
    callback = mock_mqtt_client.message_callback_add.call_args.args[1]
    callback(mock_mqtt_client, None, Mock(payload=b"data"))

    mock_logger.exception.assert_called_once()


def test_refused_connection_does_not_resubscribe(mqtt_config, mock_logger, mock_mqtt_client):
    client = NotifierMqtt(mqtt_config, mock_logger)
    client.subscribe("x/y", Mock())

    client._on_connect(mock_mqtt_client, None, None, Mock(is_failure=True), None)

    mock_mqtt_client.subscribe.assert_not_called()
    mock_logger.warning.assert_called_once()
