"""Reference collaborators: rating store and vote log.

``RatingStore`` keeps records in memory and guards writes with a per-record
version (compare-and-swap). ``VoteLog`` is append-only and optionally backed
by a JSONL file, one vote per line.
"""

from __future__ import annotations

import dataclasses
import json
import logging
import threading
from pathlib import Path
from typing import Any, Iterable

from arena.errors import ConcurrentUpdateConflict, PersistenceError, UnknownItemError
from arena.models import RatingRecord, Segment, VoteEvent

logger = logging.getLogger(__name__)


class RatingStore:
    """Rating records keyed by id.

    With ``path`` set, the full item table is rewritten to that JSON file
    before each change is committed in memory, so a failed write leaves the
    store unchanged.
    """

    def __init__(self, records: Iterable[RatingRecord] = (), path: Path | None = None) -> None:
        self.path = Path(path) if path is not None else None
        self._records: dict[str, RatingRecord] = {}
        self._lock = threading.Lock()
        if self.path is not None and self.path.exists():
            for record in load_items_from_json(self.path):
                self._records[record.id] = record
            logger.info("Loaded %d items from %s", len(self._records), self.path)
        for record in records:
            self._records[record.id] = record

    def __len__(self) -> int:
        return len(self._records)

    def _commit(self, changed: list[RatingRecord]) -> None:
        """Write through (if file-backed), then apply. Caller holds the lock."""
        staged = dict(self._records)
        for record in changed:
            staged[record.id] = record
        if self.path is not None:
            rows = [r.to_row() for r in staged.values()]
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                tmp = self.path.with_suffix(self.path.suffix + ".tmp")
                tmp.write_text(json.dumps(rows, indent=2), encoding="utf-8")
                tmp.replace(self.path)
            except OSError as exc:
                raise PersistenceError(f"Cannot write items to {self.path}: {exc}") from exc
        self._records = staged

    def add_item(self, item_id: str, url: str) -> RatingRecord:
        """Ingest a new item with default ratings. Idempotent on id."""
        with self._lock:
            existing = self._records.get(item_id)
            if existing is not None:
                return existing
            record = RatingRecord(id=item_id, url=url)
            self._commit([record])
        logger.info("Ingested item %s", item_id)
        return record

    def get_item(self, item_id: str) -> RatingRecord:
        with self._lock:
            record = self._records.get(item_id)
        if record is None:
            raise UnknownItemError(item_id)
        return record

    def fetch_all_items(self) -> list[RatingRecord]:
        with self._lock:
            return list(self._records.values())

    def fetch_active_items(self) -> list[RatingRecord]:
        with self._lock:
            return [r for r in self._records.values() if r.active]

    def set_active(self, item_id: str, active: bool) -> RatingRecord:
        with self._lock:
            record = self._records.get(item_id)
            if record is None:
                raise UnknownItemError(item_id)
            record = dataclasses.replace(record, active=active, version=record.version + 1)
            self._commit([record])
        logger.info("Item %s active=%s", item_id, active)
        return record

    def persist_rating_update(
        self,
        item_id: str,
        partial_fields: dict[str, Any],
        expected_version: int | None = None,
    ) -> RatingRecord:
        """Merge ``partial_fields`` (item-table columns) into one record."""
        with self._lock:
            current = self._records.get(item_id)
            if current is None:
                raise UnknownItemError(item_id)
            if expected_version is not None and current.version != expected_version:
                raise ConcurrentUpdateConflict(item_id, expected_version, current.version)
            row = current.to_row()
            row.update(partial_fields)
            row["id"] = item_id
            row["version"] = current.version + 1
            updated = RatingRecord.from_row(row)
            self._commit([updated])
        return updated

    def persist_rating_updates(
        self,
        updates: list[tuple[RatingRecord, int]],
    ) -> list[RatingRecord]:
        """Write several records atomically.

        Each entry is (new_record, version the caller read). Either every
        version matches and all records are written, or nothing changes.
        """
        with self._lock:
            for record, expected in updates:
                current = self._records.get(record.id)
                if current is None:
                    raise UnknownItemError(record.id)
                if current.version != expected:
                    raise ConcurrentUpdateConflict(record.id, expected, current.version)
            written = [
                dataclasses.replace(record, version=expected + 1)
                for record, expected in updates
            ]
            self._commit(written)
        return written


class VoteLog:
    def __init__(self, path: Path | None = None) -> None:
        self.path = Path(path) if path is not None else None
        self._events: list[VoteEvent] = []
        self._lock = threading.Lock()
        if self.path is not None and self.path.exists():
            self._events.extend(load_votes_from_jsonl(self.path))
            logger.info("Loaded %d votes from %s", len(self._events), self.path)

    def __len__(self) -> int:
        return len(self._events)

    def append_vote_event(self, event: VoteEvent) -> None:
        with self._lock:
            if self.path is not None:
                try:
                    self.path.parent.mkdir(parents=True, exist_ok=True)
                    with open(self.path, "a", encoding="utf-8") as f:
                        f.write(json.dumps(event.to_dict()) + "\n")
                except OSError as exc:
                    raise PersistenceError(f"Cannot append vote to {self.path}: {exc}") from exc
            self._events.append(event)

    def fetch_vote_log(self, segment_filter: str | Segment | None = None) -> tuple[VoteEvent, ...]:
        """Consistent snapshot of the log, optionally restricted to one segment."""
        with self._lock:
            snapshot = tuple(self._events)
        return filter_by_segment(snapshot, segment_filter)

    def votes_by(self, voter_id: str) -> int:
        with self._lock:
            return sum(1 for e in self._events if e.voter_id == voter_id)


def filter_by_segment(
    events: Iterable[VoteEvent],
    segment_filter: str | Segment | None,
) -> tuple[VoteEvent, ...]:
    if segment_filter is None:
        return tuple(events)
    wanted = Segment.parse(segment_filter)
    if wanted is None:
        raise ValueError(f"Unknown segment filter: {segment_filter!r}")
    return tuple(e for e in events if Segment.parse(e.segment) is wanted)


def load_votes_from_jsonl(path: Path) -> list[VoteEvent]:
    """Load vote events from a JSONL file, skipping blank and malformed lines."""
    events: list[VoteEvent] = []
    try:
        with open(path, encoding="utf-8") as f:
            for lineno, line in enumerate(f, 1):
                stripped = line.strip()
                if not stripped:
                    continue
                try:
                    events.append(VoteEvent.from_dict(json.loads(stripped)))
                except (json.JSONDecodeError, KeyError, TypeError, ValueError) as exc:
                    logger.warning("Skipping %s:%d: %s", path, lineno, exc)
    except OSError as exc:
        raise PersistenceError(f"Cannot read votes from {path}: {exc}") from exc
    return events


def load_items_from_json(path: Path) -> list[RatingRecord]:
    """Load rating records from a JSON array of item-table rows."""
    try:
        rows = json.loads(Path(path).read_text(encoding="utf-8"))
    except OSError as exc:
        raise PersistenceError(f"Cannot read items from {path}: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise ValueError(f"{path} is not valid JSON: {exc}") from exc
    if not isinstance(rows, list):
        raise ValueError(f"{path} must hold a JSON array of item rows")
    return [RatingRecord.from_row(row) for row in rows]
