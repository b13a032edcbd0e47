"""Persisted source-to-target work item identity map.

Records ``(source project, source id) -> (target project, target id)``
pairs so later analyses and deployments find the counterpart of an item
without relying on the title heuristic.  Pairs are kept in
``identity_map.json`` under the configured state directory.

* **Atomic writes** -- ``save()`` writes to a temp file then calls
  ``os.replace()`` so readers never see partial data.
* **Merge on save** -- the file is re-read under a lock before writing so
  independent operations in the same process do not drop each other's
  pairs.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from datetime import datetime, timezone
from pathlib import Path

logger = logging.getLogger(__name__)

STATE_FILE_NAME = "identity_map.json"

_save_lock = threading.Lock()


def _key(source_project_id: str, target_project_id: str) -> str:
    return f"{source_project_id}:{target_project_id}"


class IdentityMap:
    """Source-to-target work item id pairs.

    Args:
        state_dir: Directory of the state file.  ``None`` keeps the map in
            memory only.
    """

    def __init__(self, state_dir: Path | str | None = None) -> None:
        self._state_dir = Path(state_dir) if state_dir is not None else None
        self._mappings: dict[str, dict[str, int]] | None = None
        self._pending: dict[str, dict[str, int]] = {}

    @property
    def path(self) -> Path | None:
        if self._state_dir is None:
            return None
        return self._state_dir / STATE_FILE_NAME

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _read_file(self) -> dict[str, dict[str, int]]:
        path = self.path
        if path is None or not path.exists():
            return {}
        try:
            with open(path, encoding="utf-8") as fh:
                data = json.load(fh)
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Ignoring unreadable identity map %s: %s", path, exc)
            return {}
        return data.get("mappings", {})

    def _load(self) -> dict[str, dict[str, int]]:
        if self._mappings is None:
            self._mappings = self._read_file()
        return self._mappings

    def save(self) -> None:
        """Persist recorded pairs; no-op for an in-memory map."""
        state_dir = self._state_dir
        if state_dir is None or not self._pending:
            return
        with _save_lock:
            merged = self._read_file()
            for key, pairs in self._pending.items():
                merged.setdefault(key, {}).update(pairs)
            self._write(state_dir, merged)
            self._mappings = merged
            self._pending = {}

    def _write(self, state_dir: Path, mappings: dict[str, dict[str, int]]) -> None:
        state_dir.mkdir(parents=True, exist_ok=True)
        state = {
            "version": 1,
            "updated_at": datetime.now(timezone.utc).isoformat(),
            "mappings": mappings,
        }
        fd, tmp_path = tempfile.mkstemp(
            dir=str(state_dir), suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(state, fh, indent=2)
            os.replace(tmp_path, state_dir / STATE_FILE_NAME)
        except BaseException:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def lookup(
        self, source_project_id: str, target_project_id: str, source_id: int
    ) -> int | None:
        """Return the recorded target id for *source_id*, if any."""
        key = _key(source_project_id, target_project_id)
        pending = self._pending.get(key, {})
        if str(source_id) in pending:
            return pending[str(source_id)]
        return self._load().get(key, {}).get(str(source_id))

    def record(
        self,
        source_project_id: str,
        target_project_id: str,
        source_id: int,
        target_id: int,
    ) -> None:
        """Record a pair; call ``save()`` to persist it."""
        key = _key(source_project_id, target_project_id)
        self._pending.setdefault(key, {})[str(source_id)] = target_id

    def pairs(
        self, source_project_id: str, target_project_id: str
    ) -> dict[int, int]:
        key = _key(source_project_id, target_project_id)
        merged = dict(self._load().get(key, {}))
        merged.update(self._pending.get(key, {}))
        return {int(s): t for s, t in merged.items()}
