"""Scene handle.

Scene storage is not served over the session protocol yet; the handle keeps
objects in memory so callers can code against the final surface.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Dict, Optional

if TYPE_CHECKING:  # pragma: no cover
    from vitrus.client import Vitrus

LOGGER = logging.getLogger(__name__)


class Scene:
    def __init__(self, client: Vitrus, scene_id: str) -> None:
        self._client = client
        self.scene_id = scene_id
        self._objects: Dict[str, Dict[str, Any]] = {}

    def __repr__(self) -> str:
        return f"Scene(scene_id={self.scene_id!r}, objects={len(self._objects)})"

    def set(self, structure: Dict[str, Any]) -> None:
        """Replace the whole scene with ``structure`` (object id -> fields)."""

        LOGGER.debug("Setting scene %s structure", self.scene_id)
        self._objects = {str(key): dict(value) for key, value in structure.items()}

    def add(self, obj: Dict[str, Any]) -> str:
        object_id = str(obj.get("id") or self._client.correlator.new_id("obj"))
        self._objects[object_id] = {**obj, "id": object_id}
        LOGGER.debug("Added object %s to scene %s", object_id, self.scene_id)
        return object_id

    def update(self, object_id: str, **fields: Any) -> Dict[str, Any]:
        if object_id not in self._objects:
            raise KeyError(f"Scene {self.scene_id} has no object {object_id}")
        self._objects[object_id].update(fields)
        return dict(self._objects[object_id])

    def remove(self, object_id: str) -> bool:
        return self._objects.pop(object_id, None) is not None

    def get(self, object_id: Optional[str] = None) -> Any:
        """Return one object, or the whole scene (``id`` plus ``objects``) when ``object_id`` is omitted."""

        if object_id is None:
            objects = {key: dict(value) for key, value in self._objects.items()}
            return {"id": self.scene_id, "objects": objects}
        obj = self._objects.get(object_id)
        return dict(obj) if obj is not None else None
