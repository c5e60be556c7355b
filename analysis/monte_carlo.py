"""Monte Carlo rank uncertainty from Glicko ratings.

Each trial draws every item's "true" strength from Normal(rating, RD),
sorts the draws, and counts which rank each item landed on. Probabilities
are read off the per-item rank histogram.
"""

from __future__ import annotations

import logging
import math
import random
from dataclasses import dataclass, field
from typing import Sequence

from arena.models import Category, RatingRecord, Segment

logger = logging.getLogger(__name__)

DEFAULT_TRIALS = 50_000
LOW_POWER_TRIALS = 5_000
TOP_K = 5


@dataclass
class SimulationResult:
    trials: int
    top_probabilities: dict[str, float] = field(default_factory=dict)
    exact_rank_probabilities: dict[str, float] = field(default_factory=dict)
    median_ranks: dict[str, int] = field(default_factory=dict)


def random_normal(rng: random.Random) -> float:
    """Standard normal draw via the Box-Muller transform."""
    u = 0.0
    v = 0.0
    while u == 0.0:
        u = rng.random()
    while v == 0.0:
        v = rng.random()
    return math.sqrt(-2.0 * math.log(u)) * math.cos(2.0 * math.pi * v)


def random_normal_sample(mean: float, std_dev: float, rng: random.Random) -> float:
    return mean + std_dev * random_normal(rng)


def _median_rank(counts: list[int], trials: int) -> int:
    """1-based rank at which the cumulative count first reaches half the trials."""
    cumulative = 0
    idx = 0
    while cumulative < trials / 2 and idx < len(counts):
        cumulative += counts[idx]
        idx += 1
    return idx


def simulate_rank_uncertainty(
    items: Sequence[RatingRecord],
    displayed: Sequence[RatingRecord],
    segment: str | Segment | None = None,
    trial_count: int = DEFAULT_TRIALS,
    worst_view: bool = False,
    low_power: bool = False,
    top_k: int = TOP_K,
    rng: random.Random | None = None,
) -> SimulationResult:
    """Estimate top-k and exact-rank probabilities by simulation.

    Args:
        items: Every item taking part in the ranking.
        displayed: The ranked subset currently shown, best first (or worst
            first when ``worst_view`` is set).
        segment: Voter segment whose category ratings are used.
        trial_count: Number of trials; replaced by LOW_POWER_TRIALS when
            ``low_power`` is set.
        worst_view: ``displayed`` is ordered worst first.

    Returns:
        SimulationResult. Exact-rank probabilities are only filled for
        displayed items.
    """
    rng = rng or random.Random()
    trials = LOW_POWER_TRIALS if low_power else trial_count
    if trials <= 0:
        raise ValueError(f"trial_count must be positive, got {trials}")

    category = Category.for_segment(segment)
    ids = [item.id for item in items]
    params = [(item.bucket(category).glicko, item.bucket(category).rd) for item in items]
    n = len(ids)
    rank_counts: list[list[int]] = [[0] * n for _ in range(n)]

    for _ in range(trials):
        sampled = [
            (random_normal_sample(mu, rd, rng), idx)
            for idx, (mu, rd) in enumerate(params)
        ]
        sampled.sort(key=lambda s: s[0], reverse=True)
        for rank, (_, idx) in enumerate(sampled):
            rank_counts[idx][rank] += 1

    index_of = {item_id: idx for idx, item_id in enumerate(ids)}
    current_ranks: dict[str, int] = {}
    for position, item in enumerate(displayed):
        if item.id not in index_of:
            logger.warning("Displayed item %s is not among the simulated items", item.id)
            continue
        current_ranks[item.id] = n - 1 - position if worst_view else position

    result = SimulationResult(trials=trials)
    for idx, item_id in enumerate(ids):
        counts = rank_counts[idx]
        result.top_probabilities[item_id] = sum(counts[:top_k]) / trials
        result.median_ranks[item_id] = _median_rank(counts, trials)
        if item_id in current_ranks:
            result.exact_rank_probabilities[item_id] = counts[current_ranks[item_id]] / trials

    logger.debug("Simulated %d trials over %d items (%s)", trials, n, category.value)
    return result
