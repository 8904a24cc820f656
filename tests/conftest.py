"""Shared fixtures for the live location map tests."""

from types import SimpleNamespace

import paho.mqtt.client as mqtt
import pytest

from backend.renderer import MapRenderer, MarkerHandle


class RecordingRenderer(MapRenderer):
  """Map renderer that records every call instead of drawing."""

  def __init__(self):
    self.calls = []
    self._next_id = 1

  def create_marker(self, position, payload):
    handle = MarkerHandle(self._next_id, payload["identifier"], position, dict(payload))
    self._next_id += 1
    self.calls.append(("create", handle.identifier, position))
    return handle

  def update_marker(self, handle, position, payload):
    handle.position = position
    handle.payload = dict(payload)
    self.calls.append(("update", handle.identifier, position))

  def remove_marker(self, handle):
    self.calls.append(("remove", handle.identifier, handle.position))

  def center_view(self, position, zoom_hint):
    self.calls.append(("center", position, zoom_hint))

  def kinds(self, kind):
    return [c for c in self.calls if c[0] == kind]

  def reset(self):
    self.calls = []


class FakeMqttClient:
  """Captures publish() calls; rc controls the reported result."""

  def __init__(self, rc=mqtt.MQTT_ERR_SUCCESS):
    self.rc = rc
    self.published = []

  def publish(self, topic, payload=None, qos=0, retain=False):
    self.published.append((topic, payload, qos, retain))
    return SimpleNamespace(rc=self.rc)


@pytest.fixture
def renderer():
  return RecordingRenderer()


@pytest.fixture
def fake_client():
  return FakeMqttClient()


@pytest.fixture
def failing_client():
  return FakeMqttClient(rc=mqtt.MQTT_ERR_NO_CONN)
