"""Run persistence adapters."""
from __future__ import annotations

import copy
import json
import os
import threading
from pathlib import Path
from typing import Any, Dict, Optional

from .models import Run


class PersistenceError(RuntimeError):
    """Raised when a run snapshot cannot be written."""


class InMemoryRunStore:
    """Keeps the latest serialized snapshot of every run in memory."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._runs: Dict[str, Dict[str, Any]] = {}

    def save(self, run: Run) -> None:
        snapshot = run.to_dict()
        with self._lock:
            self._runs[run.id] = snapshot

    def load(self, run_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            snapshot = self._runs.get(run_id)
            return copy.deepcopy(snapshot) if snapshot is not None else None


class JsonRunStore:
    """Writes ``<root>/<run_id>/run.json`` after every state change."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def run_dir(self, run_id: str) -> Path:
        return self.root / run_id

    def save(self, run: Run) -> None:
        run_dir = self.run_dir(run.id)
        path = run_dir / "run.json"
        tmp_path = run_dir / "run.json.tmp"
        try:
            run_dir.mkdir(parents=True, exist_ok=True)
            with tmp_path.open("w", encoding="utf-8") as handle:
                json.dump(run.to_dict(), handle, ensure_ascii=False, indent=2)
            os.replace(tmp_path, path)
        except OSError as exc:
            raise PersistenceError(f"Failed to persist run {run.id}: {exc}") from exc

    def load(self, run_id: str) -> Optional[Dict[str, Any]]:
        if not run_id or Path(run_id).name != run_id or run_id in (".", ".."):
            return None
        path = self.run_dir(run_id) / "run.json"
        if not path.exists():
            return None
        with path.open("r", encoding="utf-8") as handle:
            return json.load(handle)
