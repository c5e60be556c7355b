"""Core types for Photo Arena.

Rating records carry three parallel buckets (overall plus one per voter
segment). Buckets are reached through ``RatingRecord.bucket(category)``,
never through field names built from strings.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

DEFAULT_RATING = 1500
DEFAULT_RD = 350.0

PairKey = tuple[str, str]


class Segment(Enum):
    MALE = "male"
    FEMALE = "female"

    @classmethod
    def parse(cls, value: str | Segment | None) -> Segment | None:
        """Map a declared voter segment to a Segment, or None if unrecognized."""
        if value is None:
            return None
        if isinstance(value, Segment):
            return value
        return _SEGMENT_ALIASES.get(value.strip().lower())


_SEGMENT_ALIASES: dict[str, Segment] = {
    "male": Segment.MALE,
    "man": Segment.MALE,
    "m": Segment.MALE,
    "female": Segment.FEMALE,
    "woman": Segment.FEMALE,
    "f": Segment.FEMALE,
}


class Category(Enum):
    OVERALL = "overall"
    MALE = "male"
    FEMALE = "female"

    @classmethod
    def for_segment(cls, segment: str | Segment | None) -> Category:
        parsed = Segment.parse(segment)
        if parsed is Segment.MALE:
            return cls.MALE
        if parsed is Segment.FEMALE:
            return cls.FEMALE
        return cls.OVERALL


@dataclass(frozen=True)
class Bucket:
    """Rating state of one item within one category."""

    elo: int = DEFAULT_RATING
    glicko: float = float(DEFAULT_RATING)
    rd: float = DEFAULT_RD
    comparisons: int = 0
    wins: int = 0
    losses: int = 0


@dataclass(frozen=True)
class RatingRecord:
    id: str
    url: str
    overall: Bucket = field(default_factory=Bucket)
    male: Bucket = field(default_factory=Bucket)
    female: Bucket = field(default_factory=Bucket)
    active: bool = True
    version: int = 0

    def bucket(self, category: Category) -> Bucket:
        if category is Category.OVERALL:
            return self.overall
        if category is Category.MALE:
            return self.male
        if category is Category.FEMALE:
            return self.female
        raise ValueError(f"Unknown category: {category!r}")

    def with_bucket(self, category: Category, bucket: Bucket) -> RatingRecord:
        if category is Category.OVERALL:
            return dataclasses.replace(self, overall=bucket)
        if category is Category.MALE:
            return dataclasses.replace(self, male=bucket)
        if category is Category.FEMALE:
            return dataclasses.replace(self, female=bucket)
        raise ValueError(f"Unknown category: {category!r}")

    def to_row(self) -> dict[str, Any]:
        """Flatten to the column layout used by the item table."""
        row: dict[str, Any] = {"id": self.id, "url": self.url}
        for category in Category:
            b = self.bucket(category)
            name = category.value
            row[f"rating_{name}"] = b.elo
            row[f"glicko_rating_{name}"] = b.glicko
            row[f"glicko_{name}_rd"] = b.rd
            row[f"comparisons_{name}"] = b.comparisons
            row[f"wins_{name}"] = b.wins
            row[f"losses_{name}"] = b.losses
        row["active"] = self.active
        row["version"] = self.version
        return row

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> RatingRecord:
        """Build a record from a (possibly sparse) item-table row.

        Missing rating columns fall back to the defaults a freshly ingested
        item would have.
        """
        if "id" not in row or "url" not in row:
            raise ValueError(f"Row must have 'id' and 'url', got keys: {sorted(row)}")
        buckets: dict[str, Bucket] = {}
        for category in Category:
            name = category.value
            buckets[name] = Bucket(
                elo=int(row.get(f"rating_{name}", DEFAULT_RATING)),
                glicko=float(row.get(f"glicko_rating_{name}", DEFAULT_RATING)),
                rd=float(row.get(f"glicko_{name}_rd", DEFAULT_RD)),
                comparisons=int(row.get(f"comparisons_{name}", 0)),
                wins=int(row.get(f"wins_{name}", 0)),
                losses=int(row.get(f"losses_{name}", 0)),
            )
        return cls(
            id=str(row["id"]),
            url=str(row["url"]),
            overall=buckets["overall"],
            male=buckets["male"],
            female=buckets["female"],
            active=_parse_bool(row.get("active", True)),
            version=int(row.get("version", 0)),
        )


def _parse_bool(value: Any) -> bool:
    """Read a flag that may arrive as a bool, a number or a text column."""
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    text = str(value).strip().lower()
    if text in ("true", "1", "yes", "on"):
        return True
    if text in ("false", "0", "no", "off", ""):
        return False
    raise ValueError(f"Cannot read {value!r} as a boolean")


def changed_fields(old: RatingRecord, new: RatingRecord) -> dict[str, Any]:
    """Return the columns of ``new`` that differ from ``old``."""
    before = old.to_row()
    after = new.to_row()
    return {
        k: v for k, v in after.items()
        if k not in ("id", "version") and before.get(k) != v
    }


def pair_key(id_a: str, id_b: str) -> PairKey:
    """Canonical key for an unordered pair: (A, B) and (B, A) are the same."""
    if id_a == id_b:
        raise ValueError(f"A pair needs two distinct items, got {id_a!r} twice")
    return (id_a, id_b) if id_a < id_b else (id_b, id_a)


@dataclass(frozen=True)
class VoteEvent:
    """One recorded vote. Append-only; never mutated."""

    item_a: str
    item_b: str
    winner: str
    voter_id: str
    segment: str | None
    timestamp: datetime

    def __post_init__(self) -> None:
        if self.item_a >= self.item_b:
            raise ValueError(
                f"Vote items must be canonically ordered, got {self.item_a!r}, {self.item_b!r}"
            )
        if self.winner not in (self.item_a, self.item_b):
            raise ValueError(
                f"Winner {self.winner!r} is not one of {self.item_a!r}, {self.item_b!r}"
            )

    @classmethod
    def create(
        cls,
        winner_id: str,
        loser_id: str,
        voter_id: str,
        segment: str | None = None,
        timestamp: datetime | None = None,
    ) -> VoteEvent:
        a, b = pair_key(winner_id, loser_id)
        return cls(
            item_a=a,
            item_b=b,
            winner=winner_id,
            voter_id=voter_id,
            segment=segment,
            timestamp=timestamp or datetime.now(timezone.utc),
        )

    @property
    def loser(self) -> str:
        return self.item_b if self.winner == self.item_a else self.item_a

    @property
    def key(self) -> PairKey:
        return (self.item_a, self.item_b)

    def to_dict(self) -> dict[str, Any]:
        return {
            "image_a_id": self.item_a,
            "image_b_id": self.item_b,
            "winner_id": self.winner,
            "user_id": self.voter_id,
            "user_gender": self.segment,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, record: dict[str, Any]) -> VoteEvent:
        winner = str(record["winner_id"])
        a, b = str(record["image_a_id"]), str(record["image_b_id"])
        if winner not in (a, b):
            raise ValueError(f"Winner {winner!r} is not one of {a!r}, {b!r}")
        loser = b if winner == a else a
        raw_ts = record.get("timestamp")
        timestamp = datetime.fromisoformat(raw_ts) if raw_ts else None
        if timestamp is not None and timestamp.tzinfo is None:
            # Older logs wrote naive UTC times.
            timestamp = timestamp.replace(tzinfo=timezone.utc)
        return cls.create(
            winner,
            loser,
            voter_id=str(record.get("user_id", "")),
            segment=record.get("user_gender"),
            timestamp=timestamp,
        )
