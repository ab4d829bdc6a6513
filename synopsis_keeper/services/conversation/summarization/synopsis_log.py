from __future__ import annotations

import json
import re
import threading
from datetime import datetime
from html import escape, unescape
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from ....config import get_settings
from ....logging_config import logger
from .state import CurrentSynopsis, SynopsisRecord, SynopsisState


_ATTR_PATTERN = re.compile(r"(\w+)\s*=\s*\"([^\"]*)\"")


def _slugify(name: str) -> str:
    slug = "".join(ch.lower() if ch.isalnum() else "-" for ch in name.strip()).strip("-")
    while "--" in slug:
        slug = slug.replace("--", "-")
    return slug or "conversation"


def _encode_payload(payload: str) -> str:
    normalized = payload.replace("\r\n", "\n").replace("\r", "\n")
    collapsed = normalized.replace("\\", "\\\\").replace("\n", "\\n")
    return escape(collapsed, quote=False)


def _decode_payload(payload: str) -> str:
    decoded = unescape(payload)
    return re.sub(r"\\(\\|n)", lambda match: "\n" if match.group(1) == "n" else "\\", decoded)


def _format_line(tag: str, payload: str, attributes: Optional[Dict[str, str]] = None) -> str:
    encoded = _encode_payload(payload)
    if attributes:
        attr_string = " ".join(
            f'{key}="{escape(value, quote=True)}"' for key, value in attributes.items() if value is not None
        )
        return f"<{tag} {attr_string}>{encoded}</{tag}>\n"
    return f"<{tag}>{encoded}</{tag}>\n"


class SynopsisStateLog:
    """Persisted synopsis file: live synopsis, anchor, user demand and archive."""

    def __init__(self, path: Path, archive_limit: int = 20) -> None:
        self._path = path
        self._archive_limit = archive_limit
        self._lock = threading.Lock()
        self._ensure_directory()

    @property
    def path(self) -> Path:
        return self._path

    def _ensure_directory(self) -> None:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
        except Exception as exc:  # pragma: no cover - defensive
            logger.warning(
                "synopsis directory creation failed",
                extra={"error": str(exc), "path": str(self._path)},
            )

    def load_state(self) -> SynopsisState:
        with self._lock:
            try:
                lines = self._path.read_text(encoding="utf-8").splitlines()
            except FileNotFoundError:
                return SynopsisState.empty()
            except Exception as exc:  # pragma: no cover - defensive
                logger.error(
                    "synopsis state read failed",
                    extra={"error": str(exc), "path": str(self._path)},
                )
                return SynopsisState.empty()

        text = ""
        anchor_index = -1
        updated_at: Optional[datetime] = None
        user_demand = ""
        archive: List[SynopsisRecord] = []

        for raw_line in lines:
            parsed = self._parse_line(raw_line)
            if parsed is None:
                continue
            tag, attributes, payload = parsed
            if tag == "summary_info":
                try:
                    data = json.loads(payload)
                except json.JSONDecodeError:
                    continue
                anchor_val = data.get("anchor_index")
                if isinstance(anchor_val, int):
                    anchor_index = anchor_val
                updated_raw = data.get("updated_at")
                if isinstance(updated_raw, str) and updated_raw:
                    try:
                        updated_at = datetime.fromisoformat(updated_raw)
                    except ValueError:
                        updated_at = None
            elif tag == "current_synopsis":
                text = payload
            elif tag == "user_demand":
                user_demand = payload
            elif tag == "archived_synopsis":
                record = SynopsisRecord.from_dict({**attributes, "content": payload})
                if record is not None:
                    archive.append(record)

        return SynopsisState(
            current=CurrentSynopsis(text=text, anchor_index=anchor_index, updated_at=updated_at),
            archive=archive[: self._archive_limit],
            user_demand=user_demand,
        )

    def write_state(self, state: SynopsisState) -> None:
        current = state.current
        meta_payload = json.dumps(
            {
                "anchor_index": current.anchor_index,
                "updated_at": current.updated_at.isoformat() if current.updated_at else None,
            }
        )

        lines = [_format_line("summary_info", meta_payload)]
        lines.append(_format_line("current_synopsis", current.text or ""))
        lines.append(_format_line("user_demand", state.user_demand or ""))
        for record in state.archive[: self._archive_limit]:
            attributes = {"id": record.id, "created_at": record.created_at.isoformat()}
            if record.demand:
                attributes["demand"] = record.demand
            lines.append(_format_line("archived_synopsis", record.content, attributes))

        temp_path = self._path.with_suffix(".tmp")
        data = "".join(lines)
        with self._lock:
            try:
                temp_path.write_text(data, encoding="utf-8")
                temp_path.replace(self._path)
            except Exception as exc:  # pragma: no cover - defensive
                logger.error(
                    "synopsis state write failed",
                    extra={"error": str(exc), "path": str(self._path)},
                )
                raise
            finally:
                if temp_path.exists():
                    try:
                        temp_path.unlink()
                    except Exception:  # pragma: no cover - defensive cleanup
                        pass

    def clear(self) -> None:
        with self._lock:
            try:
                if self._path.exists():
                    self._path.unlink()
            except Exception as exc:  # pragma: no cover - defensive
                logger.warning(
                    "synopsis state clear failed",
                    extra={"error": str(exc), "path": str(self._path)},
                )
            finally:
                self._ensure_directory()

    def _parse_line(self, line: str) -> Optional[Tuple[str, Dict[str, str], str]]:
        stripped = line.strip()
        if not stripped.startswith("<") or "</" not in stripped:
            return None
        open_end = stripped.find(">")
        if open_end == -1:
            return None
        open_tag_content = stripped[1:open_end]
        if " " in open_tag_content:
            tag, attr_string = open_tag_content.split(" ", 1)
        else:
            tag, attr_string = open_tag_content, ""
        close_start = stripped.rfind("</")
        close_end = stripped.rfind(">")
        if close_start == -1 or close_end == -1:
            return None
        closing_tag = stripped[close_start + 2 : close_end]
        if closing_tag != tag:
            return None
        payload = stripped[open_end + 1 : close_start]
        attributes = {
            match.group(1): unescape(match.group(2)) for match in _ATTR_PATTERN.finditer(attr_string)
        }
        return tag, attributes, _decode_payload(payload)


_synopsis_logs: Dict[str, SynopsisStateLog] = {}
_factory_lock = threading.Lock()


def get_synopsis_state_log(conversation_id: str) -> SynopsisStateLog:
    with _factory_lock:
        log = _synopsis_logs.get(conversation_id)
        if log is None:
            settings = get_settings()
            path = Path(settings.data_dir) / "synopsis" / f"{_slugify(conversation_id)}.log"
            log = SynopsisStateLog(path, archive_limit=settings.synopsis_archive_limit)
            _synopsis_logs[conversation_id] = log
        return log


__all__ = ["SynopsisStateLog", "get_synopsis_state_log"]
