from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Tuple


@dataclass
class MarkerHandle:
  marker_id: int
  identifier: str
  position: Tuple[float, float]
  payload: Dict[str, Any] = field(default_factory=dict)


class MapRenderer(ABC):
  """
  Render layer driven by a RosterReconciler. The reconciler owns the handles;
  the renderer only draws them.
  """

  @abstractmethod
  def create_marker(self, position: Tuple[float, float], payload: Dict[str, Any]) -> MarkerHandle:
    ...

  @abstractmethod
  def update_marker(self, handle: MarkerHandle, position: Tuple[float, float], payload: Dict[str, Any]) -> None:
    ...

  @abstractmethod
  def remove_marker(self, handle: MarkerHandle) -> None:
    ...

  @abstractmethod
  def center_view(self, position: Tuple[float, float], zoom_hint: float) -> None:
    ...


class MessageRenderer(MapRenderer):
  """
  Renders into JSON-ready messages for a browser map over a WebSocket.
  """

  def __init__(self) -> None:
    self._next_id = 1
    self._outbox: List[Dict[str, Any]] = []

  def _marker_message(self, kind: str, handle: MarkerHandle) -> Dict[str, Any]:
    return {
      "type": kind,
      "marker_id": handle.marker_id,
      "identifier": handle.identifier,
      "lat": handle.position[0],
      "lon": handle.position[1],
      "payload": dict(handle.payload),
    }

  def create_marker(self, position: Tuple[float, float], payload: Dict[str, Any]) -> MarkerHandle:
    handle = MarkerHandle(
      marker_id=self._next_id,
      identifier=str(payload.get("identifier", "")),
      position=position,
      payload=dict(payload),
    )
    self._next_id += 1
    self._outbox.append(self._marker_message("marker_add", handle))
    return handle

  def update_marker(self, handle: MarkerHandle, position: Tuple[float, float], payload: Dict[str, Any]) -> None:
    handle.position = position
    handle.payload = dict(payload)
    self._outbox.append(self._marker_message("marker_update", handle))

  def remove_marker(self, handle: MarkerHandle) -> None:
    self._outbox.append({
      "type": "marker_remove",
      "marker_id": handle.marker_id,
      "identifier": handle.identifier,
    })

  def center_view(self, position: Tuple[float, float], zoom_hint: float) -> None:
    self._outbox.append({
      "type": "center",
      "lat": position[0],
      "lon": position[1],
      "zoom": zoom_hint,
    })

  def drain(self) -> List[Dict[str, Any]]:
    out = self._outbox
    self._outbox = []
    return out
