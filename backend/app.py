import asyncio
import html
import json
import os
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import paho.mqtt.client as mqtt
from fastapi import Body, FastAPI, WebSocket, WebSocketDisconnect
from fastapi.responses import FileResponse, HTMLResponse
from fastapi.staticfiles import StaticFiles

from backend.config import (
  CENTER_ZOOM,
  DEBUG_PAYLOAD,
  LOCATION_NAMESPACE,
  LOCATION_TTL_SECONDS,
  MAP_START_LAT,
  MAP_START_LON,
  MAP_START_ZOOM,
  MQTT_CA_CERT,
  MQTT_CLIENT_ID,
  MQTT_HOST,
  MQTT_PASSWORD,
  MQTT_PORT,
  MQTT_TLS,
  MQTT_TLS_INSECURE,
  MQTT_TRANSPORT,
  MQTT_USERNAME,
  MQTT_WS_PATH,
  PUBLISH_QOS,
  SITE_DESCRIPTION,
  SITE_TITLE,
  STATIC_DIR,
)
from backend.feed import LocationFeed
from backend.publisher import LocationPublisher, PublishError
from backend.records import normalize_identifier, parse_record
from backend.viewer import ViewerSession

# =========================
# App / State
# =========================
app = FastAPI()
app.mount("/static", StaticFiles(directory=STATIC_DIR), name="static")

mqtt_client: Optional[mqtt.Client] = None
publisher: Optional[LocationPublisher] = None
feed = LocationFeed(LOCATION_NAMESPACE, debug=DEBUG_PAYLOAD)
update_queue: asyncio.Queue = asyncio.Queue()


@dataclass(eq=False)
class ViewerClient:
  ws: WebSocket
  session: ViewerSession
  lock: asyncio.Lock = field(default_factory=asyncio.Lock)


clients: Dict[WebSocket, ViewerClient] = {}


async def _send_messages(client: ViewerClient, messages: List[Dict[str, Any]]) -> bool:
  try:
    for message in messages:
      await client.ws.send_text(json.dumps(message))
  except Exception as exc:
    if DEBUG_PAYLOAD:
      print(f"[ws] send failed: {exc}")
    return False
  return True


async def _push_snapshot(client: ViewerClient, snapshot: Dict[str, Any]) -> bool:
  # reconcile and send under one lock so batches reach the browser in order
  async with client.lock:
    return await _send_messages(client, client.session.on_snapshot(snapshot))


async def _broadcast_snapshot() -> None:
  snapshot = feed.snapshot()
  dead = []
  for ws, client in list(clients.items()):
    if not await _push_snapshot(client, snapshot):
      dead.append(ws)
  for ws in dead:
    clients.pop(ws, None)


# =========================
# MQTT Callbacks (Paho v2)
# =========================
def mqtt_on_connect(client, userdata, flags, reason_code, properties=None):
  print(f"[mqtt] connected reason_code={reason_code} subscribing topic={feed.subscription}")
  client.subscribe(feed.subscription, qos=1)


def mqtt_on_disconnect(client, userdata, flags, reason_code, properties=None):
  print(f"[mqtt] disconnected reason_code={reason_code}")


def mqtt_on_message(client, userdata, msg: mqtt.MQTTMessage):
  # paho network thread: hand off to the event loop, never touch the feed here
  loop: asyncio.AbstractEventLoop = userdata["loop"]
  loop.call_soon_threadsafe(update_queue.put_nowait, {
    "type": "message",
    "topic": msg.topic,
    "payload": bytes(msg.payload),
  })


# =========================
# Broadcaster / Reaper
# =========================
async def broadcaster():
  while True:
    event = await update_queue.get()
    if not isinstance(event, dict) or event.get("type") != "message":
      continue
    changed = feed.handle_message(event["topic"], event["payload"])
    if changed:
      await _broadcast_snapshot()


async def reaper():
  while True:
    if LOCATION_TTL_SECONDS > 0:
      stale = feed.prune(time.time(), LOCATION_TTL_SECONDS)
      if stale:
        print(f"[feed] pruned {len(stale)} stale location(s)")
        await _broadcast_snapshot()
    await asyncio.sleep(5)


# =========================
# FastAPI routes
# =========================
@app.get("/")
def root():
  html_path = os.path.join(STATIC_DIR, "index.html")
  try:
    with open(html_path, "r", encoding="utf-8") as handle:
      content = handle.read()
  except OSError:
    return FileResponse(html_path)

  replacements = {
    "SITE_TITLE": SITE_TITLE,
    "SITE_DESCRIPTION": SITE_DESCRIPTION,
    "MAP_START_LAT": MAP_START_LAT,
    "MAP_START_LON": MAP_START_LON,
    "MAP_START_ZOOM": MAP_START_ZOOM,
  }
  for key, value in replacements.items():
    safe_value = html.escape(str(value), quote=True)
    content = content.replace(f"{{{{{key}}}}}", safe_value)

  return HTMLResponse(content)


@app.get("/snapshot")
def snapshot():
  return {
    "locations": feed.snapshot(),
    "server_time": time.time(),
  }


@app.get("/stats")
def get_stats():
  return {
    "stats": feed.stats,
    "locations": len(feed),
    "viewers": len(clients),
    "namespace": feed.namespace,
    "subscription": feed.subscription,
    "mqtt_connected": bool(mqtt_client is not None and mqtt_client.is_connected()),
    "server_time": time.time(),
  }


@app.post("/locations/{identifier:path}")
def publish_location(identifier: str, body: Dict[str, Any] = Body(...)):
  ident = normalize_identifier(identifier)
  if not ident:
    return {"ok": False, "error": "invalid_identifier"}
  record = parse_record(ident, body)
  if record is None:
    return {"ok": False, "error": "invalid_coords"}
  if publisher is None:
    return {"ok": False, "error": "mqtt_unavailable"}
  try:
    topic = publisher.publish(record)
  except PublishError as exc:
    print(f"[publish] failed identifier={ident!r}: {exc}")
    return {"ok": False, "error": f"publish_failed: {exc}"}
  if DEBUG_PAYLOAD:
    print(f"[publish] topic={topic} lat={record.lat} lon={record.lon}")
  return {"ok": True, "topic": topic, "record": record.to_payload()}


@app.delete("/locations/{identifier:path}")
def stop_location(identifier: str):
  ident = normalize_identifier(identifier)
  if not ident:
    return {"ok": False, "error": "invalid_identifier"}
  if publisher is None:
    return {"ok": False, "error": "mqtt_unavailable"}
  try:
    topic = publisher.stop(ident)
  except PublishError as exc:
    print(f"[publish] stop failed identifier={ident!r}: {exc}")
    return {"ok": False, "error": f"publish_failed: {exc}"}
  return {"ok": True, "topic": topic}


@app.websocket("/ws")
async def ws_endpoint(ws: WebSocket):
  await ws.accept()
  client = ViewerClient(ws=ws, session=ViewerSession(center_zoom=CENTER_ZOOM))
  clients[ws] = client

  try:
    if not await _push_snapshot(client, feed.snapshot()):
      return
    while True:
      text = await ws.receive_text()
      async with client.lock:
        messages = client.session.handle_client_message(text)
        if not await _send_messages(client, messages):
          return
  except WebSocketDisconnect:
    pass
  except RuntimeError:
    pass
  finally:
    clients.pop(ws, None)


# =========================
# Startup / Shutdown
# =========================
@app.on_event("startup")
async def startup():
  global mqtt_client, publisher

  loop = asyncio.get_running_loop()
  transport = "websockets" if MQTT_TRANSPORT == "websockets" else "tcp"

  print(
    f"[mqtt] connecting host={MQTT_HOST} port={MQTT_PORT} tls={MQTT_TLS} transport={transport} ws_path={MQTT_WS_PATH if transport=='websockets' else '-'} topic={feed.subscription}"
  )

  mqtt_client = mqtt.Client(
    mqtt.CallbackAPIVersion.VERSION2,
    client_id=(MQTT_CLIENT_ID or None),
    userdata={"loop": loop},
    transport=transport,
  )

  if transport == "websockets":
    mqtt_client.ws_set_options(path=MQTT_WS_PATH)

  if MQTT_USERNAME:
    mqtt_client.username_pw_set(MQTT_USERNAME, MQTT_PASSWORD)

  if MQTT_TLS:
    if MQTT_CA_CERT:
      mqtt_client.tls_set(ca_certs=MQTT_CA_CERT)
    else:
      mqtt_client.tls_set()
    if MQTT_TLS_INSECURE:
      mqtt_client.tls_insecure_set(True)

  mqtt_client.on_connect = mqtt_on_connect
  mqtt_client.on_disconnect = mqtt_on_disconnect
  mqtt_client.on_message = mqtt_on_message

  mqtt_client.reconnect_delay_set(min_delay=1, max_delay=30)
  mqtt_client.connect_async(MQTT_HOST, MQTT_PORT, keepalive=30)
  mqtt_client.loop_start()

  publisher = LocationPublisher(mqtt_client, LOCATION_NAMESPACE, qos=PUBLISH_QOS)

  asyncio.create_task(broadcaster())
  asyncio.create_task(reaper())


@app.on_event("shutdown")
async def shutdown():
  global mqtt_client, publisher
  publisher = None
  if mqtt_client is not None:
    try:
      mqtt_client.loop_stop()
      mqtt_client.disconnect()
    except Exception as exc:
      print(f"[mqtt] shutdown error: {exc}")
    mqtt_client = None
