import json
import math
import time
from typing import Any, Dict, List, Optional

from backend.records import identifier_from_key


def _reject_constant(name: str) -> Any:
  raise ValueError(f"non-finite constant {name}")


def _finite_float(text: str) -> float:
  value = float(text)
  if not math.isfinite(value):
    raise ValueError(f"non-finite number {text}")
  return value


class LocationFeed:
  """
  In-memory view of the retained location records under one namespace.

  The broker holds one retained message per participant; an empty retained
  payload deletes it. Only the event loop mutates this object.
  """

  def __init__(self, namespace: str, debug: bool = False) -> None:
    self.namespace = namespace.strip("/")
    self.debug = debug
    self._records: Dict[str, Dict[str, Any]] = {}
    self.stats: Dict[str, Any] = {
      "received_total": 0,
      "applied_total": 0,
      "deleted_total": 0,
      "pruned_total": 0,
      "invalid_total": 0,
      "last_rx_ts": None,
      "last_rx_topic": None,
    }

  @property
  def subscription(self) -> str:
    return f"{self.namespace}/+"

  def __len__(self) -> int:
    return len(self._records)

  def snapshot(self) -> Dict[str, Dict[str, Any]]:
    return {k: dict(v) for k, v in self._records.items()}

  def handle_message(self, topic: str, payload: bytes) -> bool:
    self.stats["received_total"] += 1
    self.stats["last_rx_ts"] = time.time()
    self.stats["last_rx_topic"] = topic

    identifier = identifier_from_key(self.namespace, topic)
    if identifier is None:
      self.stats["invalid_total"] += 1
      return False

    if not payload:
      if identifier not in self._records:
        return False
      self._records.pop(identifier, None)
      self.stats["deleted_total"] += 1
      if self.debug:
        print(f"[feed] removed identifier={identifier!r}")
      return True

    try:
      obj = json.loads(payload.decode("utf-8"), parse_constant=_reject_constant, parse_float=_finite_float)
    except (UnicodeDecodeError, ValueError) as exc:
      self.stats["invalid_total"] += 1
      if self.debug:
        print(f"[feed] undecodable payload topic={topic} error={exc}")
      return False

    if not isinstance(obj, dict):
      self.stats["invalid_total"] += 1
      return False

    # malformed coordinates are kept; viewers skip them during reconciliation
    self._records[identifier] = obj
    self.stats["applied_total"] += 1
    if self.debug:
      print(f"[feed] updated identifier={identifier!r} lat={obj.get('lat')} lon={obj.get('lon')}")
    return True

  def prune(self, now: Optional[float] = None, ttl_seconds: float = 0) -> List[str]:
    if ttl_seconds <= 0:
      return []
    now_ms = (time.time() if now is None else now) * 1000
    cutoff = now_ms - ttl_seconds * 1000
    stale: List[str] = []
    for identifier, record in list(self._records.items()):
      ts = record.get("timestamp")
      if isinstance(ts, bool) or not isinstance(ts, (int, float)):
        continue
      if ts < cutoff:
        stale.append(identifier)
    for identifier in stale:
      self._records.pop(identifier, None)
    self.stats["pruned_total"] += len(stale)
    return stale
