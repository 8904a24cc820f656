import os

# =========================
# Env / Config
# =========================
MQTT_HOST = os.getenv("MQTT_HOST", "localhost")
MQTT_PORT = int(os.getenv("MQTT_PORT", "1883"))
MQTT_USERNAME = os.getenv("MQTT_USERNAME", "")
MQTT_PASSWORD = os.getenv("MQTT_PASSWORD", "")

MQTT_TLS = os.getenv("MQTT_TLS", "false").lower() == "true"
MQTT_TLS_INSECURE = os.getenv("MQTT_TLS_INSECURE", "false").lower() == "true"
MQTT_CA_CERT = os.getenv("MQTT_CA_CERT", "")  # optional path to CA bundle

MQTT_TRANSPORT = os.getenv("MQTT_TRANSPORT", "tcp").strip().lower()  # tcp | websockets
MQTT_WS_PATH = os.getenv("MQTT_WS_PATH", "/mqtt")  # often "/" or "/mqtt"

MQTT_CLIENT_ID = os.getenv("MQTT_CLIENT_ID", "")

# records live at <LOCATION_NAMESPACE>/<urlencoded identifier>
LOCATION_NAMESPACE = os.getenv("LOCATION_NAMESPACE", "locations").strip().strip("/") or "locations"
try:
  PUBLISH_QOS = int(os.getenv("PUBLISH_QOS", "1"))
except ValueError:
  PUBLISH_QOS = 1
if PUBLISH_QOS not in (0, 1, 2):
  PUBLISH_QOS = 1
try:
  LOCATION_TTL_SECONDS = float(os.getenv("LOCATION_TTL_SECONDS", "0"))
except ValueError:
  LOCATION_TTL_SECONDS = 0.0
if LOCATION_TTL_SECONDS < 0:
  LOCATION_TTL_SECONDS = 0.0
try:
  CENTER_ZOOM = float(os.getenv("CENTER_ZOOM", "15"))
except ValueError:
  CENTER_ZOOM = 15.0

DEBUG_PAYLOAD = os.getenv("DEBUG_PAYLOAD", "false").lower() == "true"

SITE_TITLE = os.getenv("SITE_TITLE", "Live Location Map")
SITE_DESCRIPTION = os.getenv("SITE_DESCRIPTION", "Share your location by phone number and watch everyone else's live.")
try:
  MAP_START_LAT = float(os.getenv("MAP_START_LAT", "42.3601"))
except ValueError:
  MAP_START_LAT = 42.3601
try:
  MAP_START_LON = float(os.getenv("MAP_START_LON", "-71.1500"))
except ValueError:
  MAP_START_LON = -71.1500
try:
  MAP_START_ZOOM = float(os.getenv("MAP_START_ZOOM", "10"))
except ValueError:
  MAP_START_ZOOM = 10

APP_DIR = os.path.dirname(os.path.abspath(__file__))
STATIC_DIR = os.path.join(APP_DIR, "static")
