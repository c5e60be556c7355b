"""Pairwise win counts and win rates from a vote log.

Usage:
    python analysis/pairwise_matrix.py data/votes.jsonl
"""

from __future__ import annotations

import sys
from collections import defaultdict
from pathlib import Path
from typing import Iterable

_project_root = Path(__file__).resolve().parent.parent
if str(_project_root) not in sys.path:
    sys.path.insert(0, str(_project_root))

from arena.models import PairKey, VoteEvent
from arena.store import load_votes_from_jsonl


def build_win_matrix(
    votes: Iterable[VoteEvent],
    item_ids: Iterable[str] = (),
) -> tuple[list[str], dict[str, dict[str, int]]]:
    """Return (sorted item ids, wins[winner][loser]).

    ``item_ids`` adds items that may not appear in any vote.
    """
    wins: dict[str, dict[str, int]] = defaultdict(lambda: defaultdict(int))
    seen: set[str] = set(item_ids)
    for vote in votes:
        wins[vote.winner][vote.loser] += 1
        seen.add(vote.item_a)
        seen.add(vote.item_b)
    return sorted(seen), {w: dict(row) for w, row in wins.items()}


def games_between(wins: dict[str, dict[str, int]], a: str, b: str) -> int:
    return wins.get(a, {}).get(b, 0) + wins.get(b, {}).get(a, 0)


def compute_pairwise_matrix(
    votes: Iterable[VoteEvent],
) -> tuple[list[str], dict[PairKey, float], dict[PairKey, int]]:
    """Win rate of the row item against the column item, for every ordered pair.

    The diagonal holds 0.5 with zero games; pairs that never met hold 0.0.
    """
    items, wins = build_win_matrix(votes)
    rates: dict[PairKey, float] = {}
    counts: dict[PairKey, int] = {}
    for row_id in items:
        for col_id in items:
            played = 0 if row_id == col_id else games_between(wins, row_id, col_id)
            counts[(row_id, col_id)] = played
            if row_id == col_id:
                rates[(row_id, col_id)] = 0.5
            elif played:
                rates[(row_id, col_id)] = round(wins.get(row_id, {}).get(col_id, 0) / played, 4)
            else:
                rates[(row_id, col_id)] = 0.0
    return items, rates, counts


def print_matrix(
    items: list[str],
    rates: dict[PairKey, float],
    counts: dict[PairKey, int],
    name_width: int = 20,
) -> None:
    """Row-vs-column win rates; '.' marks pairs with no votes yet."""
    label = {item_id: item_id[:name_width] for item_id in items}
    print(f"{'Item':<{name_width}} | " + " | ".join(f"{label[c]:>6}" for c in items) + " | Games")
    print("-" * (name_width + 9 * len(items) + 10))
    for row_id in items:
        cells = []
        for col_id in items:
            if row_id == col_id:
                cells.append(f"{'--':>6}")
            elif counts.get((row_id, col_id), 0):
                cells.append(f"{rates[(row_id, col_id)]:>6.1%}")
            else:
                cells.append(f"{'.':>6}")
        played = sum(counts.get((row_id, c), 0) for c in items)
        print(f"{label[row_id]:<{name_width}} | " + " | ".join(cells) + f" | {played:>5}")


def main() -> None:
    if len(sys.argv) != 2:
        print("Usage: python analysis/pairwise_matrix.py <votes.jsonl>")
        sys.exit(1)

    votes_path = Path(sys.argv[1])
    if not votes_path.is_file():
        print(f"No such vote log: {votes_path}")
        sys.exit(1)

    votes = load_votes_from_jsonl(votes_path)
    items, rates, counts = compute_pairwise_matrix(votes)
    print(f"Pairwise Win-Rate Matrix ({len(items)} items)\n")
    print_matrix(items, rates, counts)
    print(f"\nTotal votes: {len(votes)}")


if __name__ == "__main__":
    main()
