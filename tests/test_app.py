"""Tests for the HTTP and WebSocket routes (no MQTT connection is started)."""

import asyncio
import json
import time

import pytest
from fastapi.testclient import TestClient

import backend.app as app_module
from backend.feed import LocationFeed
from backend.publisher import LocationPublisher
from backend.viewer import ViewerSession


@pytest.fixture
def feed(monkeypatch):
  feed = LocationFeed("locations")
  monkeypatch.setattr(app_module, "feed", feed)
  return feed


@pytest.fixture
def client():
  return TestClient(app_module.app)


def _store(feed, identifier, **fields):
  topic = f"locations/{identifier}"
  feed.handle_message(topic, json.dumps(fields).encode("utf-8"))


def test_root_renders_site_title(client):
  resp = client.get("/")
  assert resp.status_code == 200
  assert app_module.SITE_TITLE in resp.text
  assert "{{SITE_TITLE}}" not in resp.text


def test_snapshot_returns_store(client, feed):
  _store(feed, "a", lat=1, lon=2)

  body = client.get("/snapshot").json()

  assert body["locations"] == {"a": {"lat": 1, "lon": 2}}


def test_stats(client, feed):
  _store(feed, "a", lat=1, lon=2)

  body = client.get("/stats").json()

  assert body["locations"] == 1
  assert body["subscription"] == "locations/+"
  assert body["stats"]["applied_total"] == 1


def test_publish_rejects_invalid_coords(client, monkeypatch, fake_client):
  monkeypatch.setattr(app_module, "publisher", LocationPublisher(fake_client, "locations"))

  body = client.post("/locations/a", json={"lat": "bad", "lon": 2}).json()

  assert body == {"ok": False, "error": "invalid_coords"}
  assert fake_client.published == []


def test_publish_without_broker(client, monkeypatch):
  monkeypatch.setattr(app_module, "publisher", None)

  body = client.post("/locations/a", json={"lat": 1, "lon": 2}).json()

  assert body == {"ok": False, "error": "mqtt_unavailable"}


def test_publish_and_stop(client, monkeypatch, fake_client):
  monkeypatch.setattr(app_module, "publisher", LocationPublisher(fake_client, "locations"))

  body = client.post("/locations/%2B1555", json={"lat": 1, "lon": 2, "accuracy": 3, "timestamp": 4}).json()
  assert body["ok"] is True
  assert body["topic"] == "locations/%2B1555"
  assert body["record"] == {"identifier": "+1555", "lat": 1.0, "lon": 2.0, "timestamp": 4, "accuracy": 3.0}

  body = client.delete("/locations/%2B1555").json()
  assert body == {"ok": True, "topic": "locations/%2B1555"}
  assert fake_client.published[-1] == ("locations/%2B1555", b"", 1, True)


def test_publish_failure_is_reported(client, monkeypatch, failing_client):
  monkeypatch.setattr(app_module, "publisher", LocationPublisher(failing_client, "locations"))

  body = client.post("/locations/a", json={"lat": 1, "lon": 2}).json()

  assert body["ok"] is False
  assert body["error"].startswith("publish_failed")


def test_websocket_sends_snapshot_then_applies_filter(client, feed):
  _store(feed, "a", lat=1, lon=2)
  _store(feed, "b", lat=3, lon=4)

  with client.websocket_connect("/ws") as ws:
    first = [ws.receive_json() for _ in range(3)]
    assert [m["type"] for m in first] == ["marker_add", "marker_add", "status"]

    ws.send_text(json.dumps({"type": "filter", "identifier": "b"}))
    messages = [ws.receive_json() for _ in range(4)]
    assert [m["type"] for m in messages] == ["marker_remove", "marker_update", "center", "status"]
    assert messages[-1] == {"type": "status", "status": "tracking", "identifier": "b"}


def test_snapshot_survives_non_finite_payload(client, feed):
  _store(feed, "a", lat=1, lon=2)
  feed.handle_message("locations/b", b'{"lat": NaN, "lon": 1}')

  resp = client.get("/snapshot")

  assert resp.status_code == 200
  assert resp.json()["locations"] == {"a": {"lat": 1, "lon": 2}}


def test_identifier_with_slash_round_trips(client, monkeypatch, fake_client):
  monkeypatch.setattr(app_module, "publisher", LocationPublisher(fake_client, "locations"))

  body = client.post("/locations/ext%2F12", json={"lat": 1, "lon": 2}).json()
  assert body["ok"] is True
  assert body["record"]["identifier"] == "ext/12"
  assert body["topic"] == "locations/ext%2F12"

  body = client.delete("/locations/ext%2F12").json()
  assert body == {"ok": True, "topic": "locations/ext%2F12"}


class FakeSocket:
  def __init__(self, fail=False):
    self.fail = fail
    self.sent = []

  async def send_text(self, text):
    if self.fail:
      raise RuntimeError("socket closed")
    self.sent.append(json.loads(text))


async def _wait_until(predicate):
  for _ in range(200):
    if predicate():
      return
    await asyncio.sleep(0.01)
  raise AssertionError("condition not reached")


async def _stop(task):
  task.cancel()
  with pytest.raises(asyncio.CancelledError):
    await task


@pytest.fixture
def viewers(monkeypatch):
  registry = {}
  monkeypatch.setattr(app_module, "clients", registry)
  return registry


def _register(viewers, ws):
  viewers[ws] = app_module.ViewerClient(ws=ws, session=ViewerSession())


@pytest.mark.asyncio
async def test_broadcaster_fans_out_and_drops_dead_sockets(monkeypatch, feed, viewers):
  monkeypatch.setattr(app_module, "update_queue", asyncio.Queue())
  live = FakeSocket()
  dead = FakeSocket(fail=True)
  _register(viewers, live)
  _register(viewers, dead)

  task = asyncio.create_task(app_module.broadcaster())
  app_module.update_queue.put_nowait({
    "type": "message",
    "topic": "locations/a",
    "payload": json.dumps({"lat": 1, "lon": 2}).encode("utf-8"),
  })
  try:
    await _wait_until(lambda: len(live.sent) == 2)
  finally:
    await _stop(task)

  assert [m["type"] for m in live.sent] == ["marker_add", "status"]
  assert dead not in viewers
  assert live in viewers


@pytest.mark.asyncio
async def test_broadcaster_ignores_unchanged_store(monkeypatch, feed, viewers):
  monkeypatch.setattr(app_module, "update_queue", asyncio.Queue())
  live = FakeSocket()
  _register(viewers, live)

  task = asyncio.create_task(app_module.broadcaster())
  app_module.update_queue.put_nowait({"type": "message", "topic": "locations/a", "payload": b""})
  app_module.update_queue.put_nowait({"type": "message", "topic": "locations/b", "payload": b'{"lat": 1, "lon": 2}'})
  try:
    await _wait_until(lambda: len(live.sent) == 2)
  finally:
    await _stop(task)

  assert [m["identifier"] for m in live.sent if m["type"] == "marker_add"] == ["b"]


@pytest.mark.asyncio
async def test_reaper_prunes_and_rebroadcasts(monkeypatch, feed, viewers):
  monkeypatch.setattr(app_module, "LOCATION_TTL_SECONDS", 60)
  now_ms = int(time.time() * 1000)
  _store(feed, "old", lat=1, lon=2, timestamp=now_ms - 120_000)
  _store(feed, "new", lat=3, lon=4, timestamp=now_ms)
  live = FakeSocket()
  _register(viewers, live)
  viewers[live].session.on_snapshot(feed.snapshot())

  task = asyncio.create_task(app_module.reaper())
  try:
    await _wait_until(lambda: any(m["type"] == "marker_remove" for m in live.sent))
  finally:
    await _stop(task)

  assert [m["identifier"] for m in live.sent if m["type"] == "marker_remove"] == ["old"]
  assert set(feed.snapshot()) == {"new"}
  assert feed.stats["pruned_total"] == 1
