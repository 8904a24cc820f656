import json
from typing import Any, Dict, List, Optional

from backend.records import normalize_identifier
from backend.renderer import MessageRenderer
from backend.roster import DEFAULT_CENTER_ZOOM, RosterReconciler


class ViewerSession:
  """
  One connected map viewer: a reconciler rendering into a message outbox.

  Filter edits are re-applied immediately against the last snapshot seen,
  rather than waiting for the next feed push.
  """

  def __init__(self, center_zoom: float = DEFAULT_CENTER_ZOOM) -> None:
    self.renderer = MessageRenderer()
    self.reconciler = RosterReconciler(self.renderer, center_zoom=center_zoom)
    self.last_snapshot: Optional[Dict[str, Any]] = None

  def _reconcile(self, snapshot: Dict[str, Any]) -> List[Dict[str, Any]]:
    status = self.reconciler.apply_snapshot(snapshot)
    messages = self.renderer.drain()
    messages.append(status.to_message())
    return messages

  def on_snapshot(self, snapshot: Dict[str, Any]) -> List[Dict[str, Any]]:
    self.last_snapshot = snapshot
    return self._reconcile(snapshot)

  def on_filter(self, identifier: Optional[str]) -> List[Dict[str, Any]]:
    self.reconciler.set_filter(normalize_identifier(identifier))
    if self.last_snapshot is None:
      return []
    return self._reconcile(self.last_snapshot)

  def handle_client_message(self, text: str) -> List[Dict[str, Any]]:
    try:
      obj = json.loads(text)
    except ValueError:
      return []
    if not isinstance(obj, dict) or obj.get("type") != "filter":
      return []
    return self.on_filter(obj.get("identifier"))
