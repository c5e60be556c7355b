"""Pair selection: which two items a voter sees next.

Each call picks a phase:
  1) EXPLORE while total votes < random_phase_limit, or with probability
     partial_random_chance: uniform over unseen pairs.
  2) ADAPT otherwise: under-compared items first, then close ratings
     (excluding converged bottom items), then uniform fallback.

Candidates are built by a full scan of all unordered pairs minus the
voter's seen pairs, so selection always terminates.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from enum import Enum
from itertools import combinations

from arena.errors import InsufficientItemsError
from arena.models import Category, PairKey, RatingRecord, Segment, pair_key
from arena.seen_pairs import SeenPairStore

logger = logging.getLogger(__name__)


class PairStatus(Enum):
    EXHAUSTED = "exhausted"


EXHAUSTED = PairStatus.EXHAUSTED

Pair = tuple[RatingRecord, RatingRecord]


@dataclass
class PhaseParams:
    random_phase_limit: int = 50
    rating_diff_threshold: float = 100.0
    partial_random_chance: float = 0.2
    under_comparison_threshold: int = 5
    converged_bottom_count: int = 3
    converged_min_comparisons: int = 30


def total_votes(items: list[RatingRecord], category: Category) -> int:
    """Each vote touches two items, so comparisons are halved."""
    return sum(item.bucket(category).comparisons for item in items) // 2


def candidate_pairs(items: list[RatingRecord], seen: set[PairKey]) -> list[Pair]:
    return [
        (a, b) for a, b in combinations(items, 2)
        if pair_key(a.id, b.id) not in seen
    ]


def converged_extremes(
    items: list[RatingRecord],
    category: Category,
    bottom_count: int,
    min_comparisons: int,
) -> set[str]:
    """Ids of the lowest-rated items that already have enough comparisons."""
    if bottom_count <= 0:
        return set()
    ranked = sorted(items, key=lambda item: (item.bucket(category).glicko, item.id))
    return {
        item.id for item in ranked[:bottom_count]
        if item.bucket(category).comparisons >= min_comparisons
    }


def _rating_diff(pair: Pair, category: Category) -> float:
    return abs(pair[0].bucket(category).glicko - pair[1].bucket(category).glicko)


def _select_adaptive(
    candidates: list[Pair],
    items: list[RatingRecord],
    params: PhaseParams,
    category: Category,
    rng: random.Random,
) -> Pair:
    threshold = params.rating_diff_threshold

    priority = [
        p for p in candidates
        if min(p[0].bucket(category).comparisons, p[1].bucket(category).comparisons)
        < params.under_comparison_threshold
    ]
    if priority:
        close = [p for p in priority if _rating_diff(p, category) <= threshold]
        logger.debug("adapt: %d under-compared pairs, %d close", len(priority), len(close))
        return rng.choice(close or priority)

    excluded = converged_extremes(
        items, category, params.converged_bottom_count, params.converged_min_comparisons,
    )
    close = [
        p for p in candidates
        if _rating_diff(p, category) <= threshold
        and p[0].id not in excluded
        and p[1].id not in excluded
    ]
    if close:
        logger.debug("adapt: %d close pairs (%d items excluded)", len(close), len(excluded))
        return rng.choice(close)

    logger.debug("adapt: no close pairs, falling back to uniform choice")
    return rng.choice(candidates)


def select_next_pair(
    items: list[RatingRecord],
    params: PhaseParams,
    voter_segment: str | Segment | None,
    voter_id: str | None,
    seen_pairs: SeenPairStore,
    rng: random.Random | None = None,
) -> Pair | PairStatus:
    """Return the next pair to show, or EXHAUSTED if the voter has seen them all.

    Raises InsufficientItemsError when fewer than two items are active.
    """
    rng = rng or random.Random()
    active = [item for item in items if item.active]
    if len(active) < 2:
        raise InsufficientItemsError(len(active))

    category = Category.for_segment(voter_segment)
    votes_so_far = total_votes(active, category)

    seen = seen_pairs.get_seen_pairs(voter_id) if voter_id else set()
    candidates = candidate_pairs(active, seen)
    if not candidates:
        return EXHAUSTED

    if votes_so_far < params.random_phase_limit or rng.random() < params.partial_random_chance:
        logger.debug("explore: %d votes so far, %d candidates", votes_so_far, len(candidates))
        return rng.choice(candidates)

    return _select_adaptive(candidates, active, params, category, rng)
