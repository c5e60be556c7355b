"""Bradley-Terry strengths from the full vote log, with bootstrap rank probabilities.

Strengths are fit by the Minorization-Maximization update
    s_i <- wins_i / sum_j n_ij / (s_i + s_j)
over the opponents each item actually faced, renormalized so strengths sum
to the number of items.

Usage:
    python analysis/bt_ranking.py data/votes.jsonl [segment]
"""

from __future__ import annotations

import logging
import random
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, Sequence

_project_root = Path(__file__).resolve().parent.parent
if str(_project_root) not in sys.path:
    sys.path.insert(0, str(_project_root))

from analysis.pairwise_matrix import build_win_matrix, games_between
from arena.errors import ComputationCancelled
from arena.models import Segment, VoteEvent
from arena.store import filter_by_segment, load_votes_from_jsonl

logger = logging.getLogger(__name__)

TOP_K = 5
DEFAULT_BOOTSTRAP = 1000
DEFAULT_TOL = 1e-6
DEFAULT_MAX_ITERATIONS = 1000


@dataclass(frozen=True)
class BTEntry:
    """Bradley-Terry result for one item."""

    item_id: str
    strength: float
    rank: int
    p_top_k: float
    p_exact_rank: float
    wins: int
    comparisons: int


@dataclass(frozen=True)
class RankingResult:
    entries: list[BTEntry]
    converged: bool
    iterations: int
    n_votes: int
    n_bootstrap: int
    top_k: int = TOP_K

    def strengths(self) -> dict[str, float]:
        return {e.item_id: e.strength for e in self.entries}


def _mm_strengths(
    names: list[str],
    wins: dict[str, dict[str, int]],
    max_iterations: int = DEFAULT_MAX_ITERATIONS,
    tol: float = DEFAULT_TOL,
    smoothing: float = 0.0,
) -> tuple[dict[str, float], bool, int]:
    """Fit strengths by MM. Returns (strengths, converged, iterations).

    ``smoothing`` adds pseudo-wins to both sides of every pair that met,
    which keeps undefeated or winless items finite.
    """
    n = len(names)
    if n == 0:
        return {}, True, 0

    # Only opponents actually faced enter the sums, so s_i + s_j is never 0/0.
    opponents: dict[str, list[tuple[str, float]]] = {name: [] for name in names}
    total_wins: dict[str, float] = {name: 0.0 for name in names}
    for i_idx, i in enumerate(names):
        for j in names[i_idx + 1:]:
            if games_between(wins, i, j) == 0:
                continue
            w_ij = wins.get(i, {}).get(j, 0) + smoothing
            w_ji = wins.get(j, {}).get(i, 0) + smoothing
            opponents[i].append((j, w_ij + w_ji))
            opponents[j].append((i, w_ij + w_ji))
            total_wins[i] += w_ij
            total_wins[j] += w_ji

    scores = {name: 1.0 for name in names}
    iterations = 0
    converged = False

    while iterations < max_iterations:
        iterations += 1
        new_scores: dict[str, float] = {}
        for i in names:
            denominator = 0.0
            for j, n_ij in opponents[i]:
                denominator += n_ij / (scores[i] + scores[j])
            if denominator > 0:
                new_scores[i] = total_wins[i] / denominator
            else:
                new_scores[i] = scores[i]

        total = sum(new_scores.values())
        if total > 0:
            new_scores = {k: v * n / total for k, v in new_scores.items()}

        max_delta = max(abs(new_scores[k] - scores[k]) for k in names)
        scores = new_scores
        if max_delta < tol:
            converged = True
            break

    return scores, converged, iterations


def _rank_positions(scores: dict[str, float]) -> dict[str, int]:
    """0-based rank by descending strength; ties broken by id."""
    ordered = sorted(scores, key=lambda k: (-scores[k], k))
    return {name: pos for pos, name in enumerate(ordered)}


def estimate_rankings(
    vote_log: Sequence[VoteEvent],
    segment_filter: str | Segment | None = None,
    item_ids: Iterable[str] = (),
    n_bootstrap: int = DEFAULT_BOOTSTRAP,
    top_k: int = TOP_K,
    tol: float = DEFAULT_TOL,
    max_iterations: int = DEFAULT_MAX_ITERATIONS,
    smoothing: float = 0.0,
    seed: int | None = None,
    should_stop: Callable[[], bool] | None = None,
) -> RankingResult:
    """Rank items by Bradley-Terry strength with bootstrap rank probabilities.

    Args:
        vote_log: Snapshot of the vote log.
        segment_filter: Keep only votes from this voter segment.
        item_ids: Extra items to rank even if they have no votes.
        n_bootstrap: Number of resamples of the log.
        top_k: Size of the "top" set for p_top_k.
        seed: Seed for reproducible bootstrap (None = random).
        should_stop: Polled between resamples; True abandons the run.

    Returns:
        RankingResult with entries sorted by rank.
    """
    votes = list(filter_by_segment(vote_log, segment_filter))
    names, wins = build_win_matrix(votes, item_ids)

    win_counts = {name: sum(wins.get(name, {}).values()) for name in names}
    comparisons = {name: 0 for name in names}
    for vote in votes:
        comparisons[vote.item_a] += 1
        comparisons[vote.item_b] += 1

    if len(names) < 2:
        entries = [
            BTEntry(name, 1.0, pos, 1.0 if pos < top_k else 0.0, 1.0,
                    win_counts[name], comparisons[name])
            for pos, name in enumerate(names)
        ]
        return RankingResult(entries, True, 0, len(votes), 0, top_k)

    point, converged, iterations = _mm_strengths(names, wins, max_iterations, tol, smoothing)
    if not converged:
        logger.warning(
            "Bradley-Terry MM did not converge after %d iterations; returning last estimate",
            iterations,
        )
    point_ranks = _rank_positions(point)

    rng = random.Random(seed)
    top_hits = {name: 0 for name in names}
    exact_hits = {name: 0 for name in names}
    unconverged_runs = 0
    runs = n_bootstrap if votes else 0

    for _ in range(runs):
        if should_stop is not None and should_stop():
            raise ComputationCancelled("Bootstrap abandoned by a newer request")
        resampled = [votes[rng.randrange(len(votes))] for _ in range(len(votes))]
        _, boot_wins = build_win_matrix(resampled)
        boot_scores, boot_converged, _ = _mm_strengths(
            names, boot_wins, max_iterations, tol, smoothing,
        )
        if not boot_converged:
            unconverged_runs += 1
        for name, pos in _rank_positions(boot_scores).items():
            if pos < top_k:
                top_hits[name] += 1
            if pos == point_ranks[name]:
                exact_hits[name] += 1

    if unconverged_runs:
        logger.warning("%d of %d bootstrap fits did not converge", unconverged_runs, runs)

    denom = runs or 1
    entries = [
        BTEntry(
            item_id=name,
            strength=point[name],
            rank=point_ranks[name],
            p_top_k=top_hits[name] / denom,
            p_exact_rank=exact_hits[name] / denom,
            wins=win_counts[name],
            comparisons=comparisons[name],
        )
        for name in names
    ]
    entries.sort(key=lambda e: e.rank)
    return RankingResult(entries, converged, iterations, len(votes), runs, top_k)


def print_rankings(result: RankingResult) -> None:
    print(f"Bradley-Terry Rankings ({len(result.entries)} items, {result.n_votes} votes):")
    print(f"{'Rank':<5} {'Item':<30} {'Strength':<10} {f'P(top {result.top_k})':<10} "
          f"{'P(rank)':<9} {'W/L':<10}")
    print("-" * 78)
    for e in result.entries:
        wl = f"{e.wins}/{e.comparisons - e.wins}"
        print(f"{e.rank + 1:<5} {e.item_id:<30} {e.strength:<10.4f} {e.p_top_k:<10.1%} "
              f"{e.p_exact_rank:<9.1%} {wl:<10}")
    if not result.converged:
        print(f"\nWarning: MM did not converge in {result.iterations} iterations.")


def main() -> None:
    if len(sys.argv) < 2:
        print("Usage: python bt_ranking.py <votes.jsonl> [segment]")
        sys.exit(1)

    path = Path(sys.argv[1])
    if not path.exists():
        print(f"File not found: {path}")
        sys.exit(1)

    segment = sys.argv[2] if len(sys.argv) > 2 else None
    votes = load_votes_from_jsonl(path)
    print(f"Loaded {len(votes)} votes from {path}\n")

    result = estimate_rankings(votes, segment_filter=segment, seed=42)
    print_rankings(result)


if __name__ == "__main__":
    main()
