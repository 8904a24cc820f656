from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from backend.records import display_payload, record_position
from backend.renderer import MapRenderer, MarkerHandle

DEFAULT_CENTER_ZOOM = 15.0


@dataclass(frozen=True)
class ShowingAll:
  kind = "showing_all"

  def to_message(self) -> Dict[str, Any]:
    return {"type": "status", "status": self.kind, "identifier": None}


@dataclass(frozen=True)
class Tracking:
  identifier: str
  kind = "tracking"

  def to_message(self) -> Dict[str, Any]:
    return {"type": "status", "status": self.kind, "identifier": self.identifier}


@dataclass(frozen=True)
class TrackingUnavailable:
  identifier: str
  kind = "tracking_unavailable"

  def to_message(self) -> Dict[str, Any]:
    return {"type": "status", "status": self.kind, "identifier": self.identifier}


class RosterReconciler:
  """
  Keeps a renderer's marker set equal to the valid, filter-matching keys of
  the latest snapshot. Each snapshot is a total replacement, never a delta.

  Not reentrant: callers serialize apply_snapshot calls in arrival order.
  """

  def __init__(self, renderer: MapRenderer, center_zoom: float = DEFAULT_CENTER_ZOOM) -> None:
    self.renderer = renderer
    self.center_zoom = center_zoom
    self.filter: Optional[str] = None
    self._visible: Dict[str, MarkerHandle] = {}

  @property
  def visible(self) -> Dict[str, MarkerHandle]:
    return dict(self._visible)

  def set_filter(self, identifier: Optional[str]) -> None:
    # takes effect on the next apply_snapshot
    self.filter = identifier or None

  def wanted(self, snapshot: Dict[str, Any]) -> Dict[str, Tuple[float, float]]:
    out: Dict[str, Tuple[float, float]] = {}
    for key, record in snapshot.items():
      if self.filter and key != self.filter:
        continue
      position = record_position(record)
      if position is None:
        continue
      out[key] = position
    return out

  def apply_snapshot(self, snapshot: Dict[str, Any]):
    wanted = self.wanted(snapshot)

    stale = [key for key in self._visible if key not in wanted]
    for key in stale:
      handle = self._visible.pop(key)
      self.renderer.remove_marker(handle)

    for key, position in wanted.items():
      payload = display_payload(key, snapshot[key])
      handle = self._visible.get(key)
      if handle is not None:
        self.renderer.update_marker(handle, position, payload)
      else:
        self._visible[key] = self.renderer.create_marker(position, payload)

    if not self.filter:
      return ShowingAll()
    if self.filter in wanted:
      self.renderer.center_view(wanted[self.filter], self.center_zoom)
      return Tracking(self.filter)
    return TrackingUnavailable(self.filter)
