"""Persist and expose named user-demand presets."""

from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import Dict, Optional

from ..config import get_settings
from ..logging_config import logger


DEFAULT_PRESETS: Dict[str, str] = {
    "Adventure": "an exciting adventure with challenges and discoveries",
    "Romance": "a romantic development between characters",
    "Daily Life": "casual daily interactions and slice-of-life moments",
    "Mystery": "a mysterious event or puzzle to solve",
    "Action": "intense action sequences and conflicts",
}


class PresetStore:
    """Stores user-demand presets; the defaults are copied in on first write."""

    def __init__(self, path: Optional[Path]):
        self._path = path
        self._lock = threading.Lock()
        self._cached: Optional[Dict[str, str]] = None
        self._load()

    def _load(self) -> None:
        if self._path is None:
            self._cached = None
            return
        try:
            raw = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            self._cached = None
            return
        except Exception as exc:  # pragma: no cover - defensive
            logger.warning("failed to read presets file", extra={"error": str(exc)})
            self._cached = None
            return

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            logger.warning("presets file corrupt; using defaults", extra={"error": str(exc)})
            self._cached = None
            return
        if isinstance(data, dict):
            self._cached = {str(name): str(value) for name, value in data.items()}

    def list_presets(self) -> Dict[str, str]:
        with self._lock:
            return dict(self._cached if self._cached is not None else DEFAULT_PRESETS)

    def get(self, name: str) -> Optional[str]:
        return self.list_presets().get(name)

    def store(self, name: str, content: str) -> None:
        key = self._validate(name)
        with self._lock:
            presets = self._user_presets()
            presets[key] = content or ""
            self._write(presets)
            logger.info("stored user demand preset", extra={"preset": key})

    def delete(self, name: str) -> bool:
        with self._lock:
            presets = self._user_presets()
            if name not in presets:
                return False
            del presets[name]
            self._write(presets)
            logger.info("deleted user demand preset", extra={"preset": name})
            return True

    def _user_presets(self) -> Dict[str, str]:
        if self._cached is None:
            self._cached = dict(DEFAULT_PRESETS)
        return self._cached

    def _write(self, presets: Dict[str, str]) -> None:
        if self._path is None:
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(json.dumps(presets, ensure_ascii=False, indent=2), encoding="utf-8")

    def _validate(self, name: str) -> str:
        candidate = (name or "").strip()
        if not candidate:
            raise ValueError("preset name must be a non-empty string")
        return candidate


_preset_store: Optional[PresetStore] = None
_store_lock = threading.Lock()


def get_preset_store() -> PresetStore:
    global _preset_store
    with _store_lock:
        if _preset_store is None:
            _preset_store = PresetStore(Path(get_settings().data_dir) / "presets.json")
        return _preset_store


__all__ = ["DEFAULT_PRESETS", "PresetStore", "get_preset_store"]
