import logging
import threading
from typing import Dict, Optional, Set

import paho.mqtt.client as paho

from envmon_core.domain.models import CompositeRecord

logger = logging.getLogger(__name__)


class MqttSink:
    """Publishes each record as JSON on ``<topic_prefix>/<device name>``.

    A write succeeds once the broker acknowledges the QoS 1 publish within
    ``ack_timeout`` seconds.
    """

    def __init__(
        self,
        *,
        host: str,
        port: int = 1883,
        topic_prefix: str,
        client_id: str,
        username: Optional[str] = None,
        password: Optional[str] = None,
        keepalive: int = 60,
        ack_timeout: float = 10.0,
    ):
        self.host = host
        self.port = port
        self.topic_prefix = topic_prefix.rstrip("/")
        self.client_id = client_id
        self.keepalive = keepalive
        self.ack_timeout = ack_timeout

        self._pending: Dict[int, threading.Event] = {}
        self._acked: Set[int] = set()
        self._in_publish = False
        self._lock = threading.RLock()
        self._connected = False
        self._disconnected_rc = None

        self._client = paho.Client(
            paho.CallbackAPIVersion.VERSION2,
            client_id=client_id,
            clean_session=True,
            userdata=self,
            protocol=paho.MQTTv311,
        )
        self._client.on_publish = self._on_publish
        self._client.on_disconnect = self._on_disconnect
        self._client.on_connect = self._on_connect

        if username and password:
            self._client.username_pw_set(username, password)

        logger.info(
            "Initializing MQTT sink: host=%s, port=%s, topic_prefix=%s, client_id=%s",
            host,
            port,
            self.topic_prefix,
            client_id,
        )

        self._connect()

    def _connect(self) -> None:
        """Connect to the MQTT broker."""
        try:
            result = self._client.connect(self.host, self.port, self.keepalive)
            if result != paho.MQTT_ERR_SUCCESS:
                logger.error("Failed to connect to MQTT broker: %s", result)
                return

            self._client.loop_start()
            logger.info("Connected to MQTT broker")
        except Exception as e:
            logger.error("Exception during MQTT connection: %s", e)

    def _on_connect(self, client, userdata, flags, reason_code, properties=None) -> None:
        if reason_code == 0:
            self._connected = True
            logger.info("Successfully connected to MQTT broker")
        else:
            self._connected = False
            logger.error("Failed to connect to MQTT broker, reason: %s", reason_code)

    def _on_publish(self, client, userdata, mid, reason_code=None, properties=None) -> None:
        logger.debug("Publish acknowledged for message ID: %s", mid)
        with self._lock:
            ev = self._pending.get(mid)
            if ev is not None:
                ev.set()
            elif self._in_publish:
                # acknowledged inside publish(), before write() registered the mid
                self._acked.add(mid)
            else:
                logger.debug("Late acknowledgment for message ID %s ignored", mid)

    def _on_disconnect(self, client, userdata, flags, reason_code=None, properties=None) -> None:
        self._connected = False
        self._disconnected_rc = reason_code
        logger.warning("Disconnected from MQTT broker, reason: %s", reason_code)

    def topic_for(self, record: CompositeRecord) -> str:
        return f"{self.topic_prefix}/{record.device_name}"

    def write(self, record: CompositeRecord) -> bool:
        if not self._connected:
            logger.warning("Not connected to MQTT broker, dropping record for %s", record.device_name)
            return False

        # held across publish() so the network thread cannot ack an unregistered mid
        with self._lock:
            self._in_publish = True
            try:
                info = self._client.publish(self.topic_for(record), record.to_string(), qos=1)
            finally:
                self._in_publish = False
            if info.rc != paho.MQTT_ERR_SUCCESS:
                logger.error(
                    "Failed to publish record for %s, error code: %s", record.device_name, info.rc
                )
                return False
            if info.mid in self._acked:
                self._acked.discard(info.mid)
                return self._connected
            ev = threading.Event()
            self._pending[info.mid] = ev

        success = ev.wait(timeout=self.ack_timeout)
        with self._lock:
            self._pending.pop(info.mid, None)

        if not success:
            logger.warning("Publish acknowledgment timeout for %s", record.device_name)
        return success and self._connected

    def is_connected(self) -> bool:
        return self._connected

    def get_disconnect_reason(self):
        return self._disconnected_rc

    def close(self) -> None:
        logger.info("Closing MQTT connection")
        self._client.loop_stop()
        self._client.disconnect()
        self._connected = False
