"""Command line tools for Photo Arena.

Usage:
    # Bradley-Terry ranking with bootstrap rank probabilities
    python -m arena --rank data/votes.jsonl --segment female --bootstrap 500 --seed 42

    # Replay a vote log through the incremental Elo/Glicko updater
    python -m arena --replay data/votes.jsonl --items data/items.json

    # Monte Carlo rank uncertainty for a saved item table
    python -m arena --simulate data/items.json --trials 20000

    # Pairwise win-rate matrix
    python -m arena --matrix data/votes.jsonl
"""

from __future__ import annotations

import argparse
import logging
import random
import sys
from pathlib import Path

from analysis.bt_ranking import estimate_rankings, print_rankings
from analysis.monte_carlo import simulate_rank_uncertainty
from analysis.pairwise_matrix import compute_pairwise_matrix, print_matrix
from arena.config import ArenaConfig
from arena.errors import ArenaError
from arena.models import Category, RatingRecord, VoteEvent
from arena.ratings import apply_vote
from arena.store import load_items_from_json, load_votes_from_jsonl

logger = logging.getLogger(__name__)


def _require_file(path: str) -> Path:
    p = Path(path)
    if not p.exists():
        raise ValueError(f"File not found: {p}")
    return p


def replay_votes(
    votes: list[VoteEvent],
    items: list[RatingRecord] | None = None,
    config: ArenaConfig | None = None,
) -> dict[str, RatingRecord]:
    """Run votes through ``apply_vote`` in timestamp order.

    Items that only appear in the log start from default ratings.
    """
    cfg = config or ArenaConfig()
    records = {item.id: item for item in items or []}
    skipped = 0
    for vote in sorted(votes, key=lambda v: v.timestamp):
        missing = [item_id for item_id in vote.key if item_id not in records]
        if missing and items:
            skipped += 1
            continue
        for item_id in missing:
            records[item_id] = RatingRecord(id=item_id, url="")
        winner, loser = apply_vote(
            records[vote.winner], records[vote.loser], vote.segment, cfg.ratings,
        )
        records[winner.id] = winner
        records[loser.id] = loser
    if skipped:
        logger.warning("Skipped %d votes naming items missing from the item table", skipped)
    return records


def _print_leaderboard(records: list[RatingRecord], category: Category) -> None:
    ranked = sorted(records, key=lambda r: (-r.bucket(category).elo, r.id))
    print(f"\n{category.value.capitalize()} ({len(ranked)} items):")
    print(f"{'Rank':<5} {'Item':<30} {'Elo':>6} {'Glicko':>8} {'RD':>7} {'W/L':>9}")
    print("-" * 70)
    for pos, record in enumerate(ranked, 1):
        b = record.bucket(category)
        wl = f"{b.wins}/{b.losses}"
        print(f"{pos:<5} {record.id:<30} {b.elo:>6} {b.glicko:>8.1f} {b.rd:>7.1f} {wl:>9}")


def _run_rank(args: argparse.Namespace, config: ArenaConfig) -> None:
    votes = load_votes_from_jsonl(_require_file(args.rank))
    print(f"Loaded {len(votes)} votes from {args.rank}\n")
    bootstrap = args.bootstrap if args.bootstrap is not None else config.bootstrap_samples
    result = estimate_rankings(
        votes, segment_filter=args.segment, n_bootstrap=bootstrap, seed=args.seed,
    )
    print_rankings(result)


def _run_replay(args: argparse.Namespace, config: ArenaConfig) -> None:
    votes = load_votes_from_jsonl(_require_file(args.replay))
    items = load_items_from_json(_require_file(args.items)) if args.items else None
    records = replay_votes(votes, items, config)
    print(f"Replayed {len(votes)} votes over {len(records)} items")
    for category in Category:
        _print_leaderboard(list(records.values()), category)


def _run_simulate(args: argparse.Namespace, config: ArenaConfig) -> None:
    items = load_items_from_json(_require_file(args.simulate))
    if not items:
        raise ValueError(f"{args.simulate} holds no items")
    category = Category.for_segment(args.segment)
    displayed = sorted(items, key=lambda r: (-r.bucket(category).glicko, r.id))
    if args.worst:
        displayed.reverse()
    trials = args.trials if args.trials is not None else config.monte_carlo_trials

    result = simulate_rank_uncertainty(
        items,
        displayed,
        args.segment,
        trial_count=trials,
        worst_view=args.worst,
        low_power=args.low_power or config.low_power,
        rng=random.Random(args.seed),
    )
    view = "worst" if args.worst else "best"
    print(f"Monte Carlo rank uncertainty ({result.trials} trials, {category.value}, {view} first):")
    print(f"{'Pos':<5} {'Item':<30} {'Glicko':>8} {'RD':>7} {'P(top 5)':>9} "
          f"{'P(here)':>8} {'Median':>7}")
    print("-" * 80)
    for pos, record in enumerate(displayed, 1):
        b = record.bucket(category)
        print(f"{pos:<5} {record.id:<30} {b.glicko:>8.1f} {b.rd:>7.1f} "
              f"{result.top_probabilities[record.id]:>9.1%} "
              f"{result.exact_rank_probabilities.get(record.id, 0.0):>8.1%} "
              f"{result.median_ranks[record.id]:>7}")


def _run_matrix(args: argparse.Namespace) -> None:
    votes = load_votes_from_jsonl(_require_file(args.matrix))
    items, win_rates, game_counts = compute_pairwise_matrix(votes)
    print(f"Pairwise Win-Rate Matrix ({len(items)} items)\n")
    print_matrix(items, win_rates, game_counts)
    print(f"\nTotal votes: {len(votes)}")


def main(argv: list[str] | None = None) -> None:
    """Entry point for the arena CLI."""
    parser = argparse.ArgumentParser(
        description="Photo Arena - ranking tools",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            "  python -m arena --rank data/votes.jsonl --segment female --seed 42\n"
            "  python -m arena --replay data/votes.jsonl --items data/items.json\n"
            "  python -m arena --simulate data/items.json --trials 20000 --worst\n"
            "  python -m arena --matrix data/votes.jsonl\n"
        ),
    )

    # Mode flags
    mode = parser.add_mutually_exclusive_group(required=True)
    mode.add_argument("--rank", metavar="VOTES", help="Bradley-Terry ranking of a JSONL vote log")
    mode.add_argument("--replay", metavar="VOTES", help="Replay a JSONL vote log through Elo/Glicko")
    mode.add_argument("--simulate", metavar="ITEMS", help="Monte Carlo rank uncertainty for an item table")
    mode.add_argument("--matrix", metavar="VOTES", help="Pairwise win-rate matrix of a JSONL vote log")

    parser.add_argument(
        "--segment", type=str, default=None,
        help="Voter segment to rank for (male/female; default: overall)",
    )
    parser.add_argument(
        "--items", type=str, default=None,
        help="Item table (JSON) to start a replay from",
    )
    parser.add_argument(
        "--bootstrap", type=int, default=None,
        help="Bootstrap resamples for --rank (default: ARENA_BOOTSTRAP_SAMPLES or 1000)",
    )
    parser.add_argument(
        "--trials", type=int, default=None,
        help="Monte Carlo trials for --simulate (default: ARENA_MONTE_CARLO_TRIALS or 50000)",
    )
    parser.add_argument(
        "--low-power", action="store_true",
        help="Use the reduced trial count",
    )
    parser.add_argument(
        "--worst", action="store_true",
        help="Treat the displayed list as worst first",
    )
    parser.add_argument(
        "--seed", type=int, default=None,
        help="Random seed for reproducibility",
    )
    parser.add_argument(
        "--log-level", type=str, default="WARNING",
        help="Logging level (default: WARNING)",
    )

    args = parser.parse_args(argv)
    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        config = ArenaConfig.from_env()
        if args.rank:
            _run_rank(args, config)
        elif args.replay:
            _run_replay(args, config)
        elif args.simulate:
            _run_simulate(args, config)
        else:
            _run_matrix(args)
    except (ArenaError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
