from __future__ import annotations

from dataclasses import replace
from typing import Iterable, Iterator, List, Optional, Tuple

from ....logging_config import logger
from .state import SynopsisRecord


MAX_HISTORY = 20


class SynopsisArchive:
    """Newest-first list of past synopses; the oldest entries are evicted past the limit."""

    def __init__(self, records: Optional[Iterable[SynopsisRecord]] = None, limit: int = MAX_HISTORY) -> None:
        self._limit = max(limit, 0)
        self._records: List[SynopsisRecord] = list(records or [])[: self._limit]

    @property
    def limit(self) -> int:
        return self._limit

    @property
    def records(self) -> Tuple[SynopsisRecord, ...]:
        return tuple(self._records)

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[SynopsisRecord]:
        return iter(tuple(self._records))

    def archive(self, content: str, demand: Optional[str] = None) -> Optional[SynopsisRecord]:
        if not (content or "").strip():
            return None
        record = SynopsisRecord.create(content, demand)
        self._records.insert(0, record)
        evicted = self._records[self._limit:]
        del self._records[self._limit:]
        if evicted:
            logger.debug("synopsis archive evicted entries", extra={"evicted": len(evicted)})
        return record if self._limit else None

    def find(self, record_id: str) -> Optional[SynopsisRecord]:
        for record in self._records:
            if record.id == record_id:
                return record
        return None

    def update(self, record_id: str, content: str) -> Optional[SynopsisRecord]:
        for position, record in enumerate(self._records):
            if record.id == record_id:
                updated = replace(record, content=content)
                self._records[position] = updated
                return updated
        return None

    def delete(self, record_id: str) -> bool:
        before = len(self._records)
        self._records = [record for record in self._records if record.id != record_id]
        return len(self._records) != before


__all__ = ["MAX_HISTORY", "SynopsisArchive"]
