import json

import paho.mqtt.client as mqtt

from backend.records import LocationRecord, record_key


class PublishError(Exception):
  pass


class LocationPublisher:
  """
  Writes location records as retained messages, one topic per identifier.
  """

  def __init__(self, client: mqtt.Client, namespace: str, qos: int = 1) -> None:
    self.client = client
    self.namespace = namespace.strip("/")
    self.qos = qos

  def _publish(self, topic: str, payload: bytes) -> None:
    info = self.client.publish(topic, payload=payload, qos=self.qos, retain=True)
    if info.rc != mqtt.MQTT_ERR_SUCCESS:
      raise PublishError(f"{topic}: {mqtt.error_string(info.rc)}")

  def publish(self, record: LocationRecord) -> str:
    topic = record_key(self.namespace, record.identifier)
    self._publish(topic, json.dumps(record.to_payload()).encode("utf-8"))
    return topic

  def stop(self, identifier: str) -> str:
    # an empty retained payload clears the broker's retained message
    topic = record_key(self.namespace, identifier)
    self._publish(topic, b"")
    return topic
