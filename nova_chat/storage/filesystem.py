"""FilesystemStore: one JSON document per key plus a JSON index."""

from __future__ import annotations

import hashlib
import json
import logging
import os
import re
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from ..core.store import KeyValueStore
from .helpers import dt_to_str

logger = logging.getLogger(__name__)

_SAFE_KEY_RE = re.compile(r"[^A-Za-z0-9_.-]")


class FilesystemStore(KeyValueStore):
    """Store each key as ``<root>/values/<key>.json``; writes are atomic renames.

    The index lives beside ``values/`` so no key can shadow it. Keys that
    need sanitizing get a digest suffix so distinct keys never share a file.
    """

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)
        self._values_dir = self.root / "values"
        self._index_path = self.root / "index.json"
        self._index: dict[str, dict] = {}
        self._lock = threading.Lock()
        self._ensure_root()
        self._load_index()

    def _ensure_root(self) -> None:
        self._values_dir.mkdir(parents=True, exist_ok=True)

    def _load_index(self) -> None:
        if self._index_path.is_file():
            try:
                data = json.loads(self._index_path.read_text())
                self._index = {entry["key"]: entry for entry in data}
            except (json.JSONDecodeError, KeyError):
                logger.warning("Index at %s is unreadable, rebuilding", self._index_path)
                self._index = {}
        else:
            self._index = {}

    def _save_index(self) -> None:
        self._write_atomic(
            self._index_path,
            json.dumps(list(self._index.values()), indent=2),
        )

    def _key_path(self, key: str) -> Path:
        name = _SAFE_KEY_RE.sub("_", key)
        if name != key:
            digest = hashlib.sha1(key.encode("utf-8")).hexdigest()[:12]
            name = f"{name}-{digest}"
        return self._values_dir / f"{name}.json"

    @staticmethod
    def _write_atomic(path: Path, text: str) -> None:
        tmp = path.with_suffix(path.suffix + ".tmp")
        tmp.write_text(text, encoding="utf-8")
        os.replace(tmp, path)

    def get(self, key: str, default: Any = None) -> Any:
        path = self._key_path(key)
        with self._lock:
            if not path.is_file():
                return default
            try:
                return json.loads(path.read_text(encoding="utf-8"))
            except json.JSONDecodeError:
                logger.warning("Stored value for %r is corrupt, ignoring", key)
                return default

    def set(self, key: str, value: Any) -> None:
        path = self._key_path(key)
        with self._lock:
            self._write_atomic(path, json.dumps(value, ensure_ascii=False, indent=2))
            self._index[key] = {
                "key": key,
                "file": path.name,
                "updated_at": dt_to_str(datetime.now(timezone.utc)),
            }
            self._save_index()

    def delete(self, key: str) -> bool:
        path = self._key_path(key)
        with self._lock:
            existed = path.is_file()
            if existed:
                path.unlink()
            if self._index.pop(key, None) is not None:
                self._save_index()
        return existed

    def keys(self) -> list[str]:
        with self._lock:
            return sorted(self._index)
