import math
import time
import urllib.parse
from dataclasses import dataclass, asdict
from typing import Any, Dict, Optional, Tuple

# =========================
# Location records
# =========================
LATLON_KEYS_LAT = ("lat", "latitude")
LATLON_KEYS_LON = ("lon", "lng", "longitude")


@dataclass(frozen=True)
class LocationRecord:
  identifier: str
  lat: float
  lon: float
  timestamp: int
  accuracy: Optional[float] = None

  def to_payload(self) -> Dict[str, Any]:
    return asdict(self)


def _valid_lat_lon(lat: float, lon: float) -> bool:
  return -90.0 <= lat <= 90.0 and -180.0 <= lon <= 180.0


def _is_number(value: Any) -> bool:
  if isinstance(value, bool):
    return False
  if not isinstance(value, (int, float)):
    return False
  return math.isfinite(value)


def _first_key(obj: Dict[str, Any], keys: Tuple[str, ...]) -> Any:
  for k in keys:
    if k in obj:
      return obj.get(k)
  return None


def record_position(record: Any) -> Optional[Tuple[float, float]]:
  """
  Numeric (lat, lon) of a record, or None when the record is malformed.
  Strings are never coerced: a record with lat="10" has no position.
  """
  if isinstance(record, LocationRecord):
    lat, lon = record.lat, record.lon
  elif isinstance(record, dict):
    lat = _first_key(record, LATLON_KEYS_LAT)
    lon = _first_key(record, LATLON_KEYS_LON)
  else:
    return None

  if not _is_number(lat) or not _is_number(lon):
    return None
  latf = float(lat)
  lonf = float(lon)
  if not _valid_lat_lon(latf, lonf):
    return None
  return latf, lonf


def _optional_number(value: Any) -> Optional[float]:
  if _is_number(value):
    return float(value)
  return None


def display_payload(identifier: str, record: Any) -> Dict[str, Any]:
  if isinstance(record, LocationRecord):
    accuracy = record.accuracy
    timestamp = record.timestamp
  elif isinstance(record, dict):
    accuracy = _optional_number(record.get("accuracy"))
    timestamp = record.get("timestamp")
    if not _is_number(timestamp):
      timestamp = None
  else:
    accuracy = None
    timestamp = None
  return {
    "identifier": identifier,
    "accuracy": accuracy,
    "timestamp": int(timestamp) if timestamp is not None else None,
  }


def parse_record(identifier: str, obj: Any, now: Optional[float] = None) -> Optional[LocationRecord]:
  """
  Build a LocationRecord from a publisher's JSON body. Missing timestamps
  default to the current time in epoch-millis.
  """
  if not isinstance(obj, dict):
    return None
  position = record_position(obj)
  if position is None:
    return None

  timestamp = obj.get("timestamp")
  if not _is_number(timestamp):
    timestamp = (time.time() if now is None else now) * 1000

  return LocationRecord(
    identifier=identifier,
    lat=position[0],
    lon=position[1],
    timestamp=int(timestamp),
    accuracy=_optional_number(obj.get("accuracy")),
  )


def normalize_identifier(value: Any) -> Optional[str]:
  if value is None:
    return None
  s = str(value).strip()
  return s or None


# =========================
# Store keys: <namespace>/<urlencoded identifier>
# =========================
def record_key(namespace: str, identifier: str) -> str:
  return f"{namespace.strip('/')}/{urllib.parse.quote(identifier, safe='')}"


def identifier_from_key(namespace: str, key: str) -> Optional[str]:
  prefix = namespace.strip("/") + "/"
  if not key.startswith(prefix):
    return None
  quoted = key[len(prefix):]
  if not quoted or "/" in quoted:
    return None
  return urllib.parse.unquote(quoted)
