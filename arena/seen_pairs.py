"""Per-voter record of pairs already shown.

A voter's set only grows. Two backends: in-memory, and a JSON file holding
``{voter_id: ["a|b", ...]}`` that is rewritten on every new pair.
"""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Protocol

from arena.errors import PersistenceError
from arena.models import PairKey, pair_key

logger = logging.getLogger(__name__)

_KEY_SEP = "|"


class SeenPairStore(Protocol):
    def get_seen_pairs(self, voter_id: str) -> set[PairKey]: ...

    def record_seen_pair(self, voter_id: str, id_a: str, id_b: str) -> None: ...


def encode_key(key: PairKey) -> str:
    return f"{key[0]}{_KEY_SEP}{key[1]}"


def decode_key(raw: str) -> PairKey:
    parts = raw.split(_KEY_SEP)
    if len(parts) != 2:
        raise ValueError(f"Pair key must be 'a{_KEY_SEP}b', got: {raw!r}")
    return pair_key(parts[0], parts[1])


class InMemorySeenPairs:
    def __init__(self) -> None:
        self._pairs: dict[str, set[PairKey]] = {}
        self._lock = threading.Lock()

    def get_seen_pairs(self, voter_id: str) -> set[PairKey]:
        with self._lock:
            return set(self._pairs.get(voter_id, ()))

    def record_seen_pair(self, voter_id: str, id_a: str, id_b: str) -> None:
        key = pair_key(id_a, id_b)
        with self._lock:
            self._pairs.setdefault(voter_id, set()).add(key)

    def voters(self) -> list[str]:
        with self._lock:
            return sorted(self._pairs)


class JsonFileSeenPairs(InMemorySeenPairs):
    """Seen pairs persisted to a single JSON file."""

    def __init__(self, path: Path) -> None:
        super().__init__()
        self.path = Path(path)
        if self.path.exists():
            self._load()

    def _load(self) -> None:
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except OSError as exc:
            raise PersistenceError(f"Cannot read seen pairs from {self.path}: {exc}") from exc
        except json.JSONDecodeError as exc:
            raise PersistenceError(f"Corrupt seen-pair file {self.path}: {exc}") from exc

        for voter_id, keys in data.items():
            pairs = self._pairs.setdefault(voter_id, set())
            for raw in keys:
                try:
                    pairs.add(decode_key(raw))
                except ValueError:
                    logger.warning("Skipping malformed pair key %r for voter %s", raw, voter_id)

    def record_seen_pair(self, voter_id: str, id_a: str, id_b: str) -> None:
        key = pair_key(id_a, id_b)
        with self._lock:
            if key in self._pairs.get(voter_id, ()):
                return
            snapshot = {
                voter: sorted(encode_key(k) for k in keys)
                for voter, keys in self._pairs.items()
            }
            snapshot.setdefault(voter_id, []).append(encode_key(key))
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                tmp = self.path.with_suffix(self.path.suffix + ".tmp")
                tmp.write_text(json.dumps(snapshot), encoding="utf-8")
                tmp.replace(self.path)
            except OSError as exc:
                raise PersistenceError(f"Cannot write seen pairs to {self.path}: {exc}") from exc
            self._pairs.setdefault(voter_id, set()).add(key)
