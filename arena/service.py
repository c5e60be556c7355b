"""Wires the scheduler, the rating updater and the collaborators together.

The vote path (``next_pair`` / ``submit_vote``) stays cheap. Bradley-Terry
and Monte Carlo runs are deferred jobs: each request bumps a generation
number, and a run that has been superseded is abandoned or discarded.
"""

from __future__ import annotations

import logging
import random
import threading
from dataclasses import dataclass
from typing import Any

from analysis.bt_ranking import RankingResult, estimate_rankings
from analysis.monte_carlo import SimulationResult, simulate_rank_uncertainty
from arena.config import ArenaConfig
from arena.errors import ComputationCancelled, ConcurrentUpdateConflict, PersistenceError
from arena.models import Category, RatingRecord, Segment, VoteEvent
from arena.ratings import apply_vote
from arena.scheduler import Pair, PairStatus, select_next_pair, total_votes
from arena.seen_pairs import InMemorySeenPairs, JsonFileSeenPairs, SeenPairStore
from arena.store import RatingStore, VoteLog

logger = logging.getLogger(__name__)

BRADLEY_TERRY = "bradley_terry"
MONTE_CARLO = "monte_carlo"


@dataclass(frozen=True)
class VoteOutcome:
    winner: RatingRecord
    loser: RatingRecord
    event: VoteEvent


class RankingJobs:
    """Latest-wins bookkeeping for deferred ranking computations."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._generations: dict[tuple[str, str], int] = {}
        self._results: dict[tuple[str, str], Any] = {}

    def request(self, key: tuple[str, str]) -> int:
        with self._lock:
            gen = self._generations.get(key, 0) + 1
            self._generations[key] = gen
            return gen

    def is_current(self, key: tuple[str, str], generation: int) -> bool:
        with self._lock:
            return self._generations.get(key, 0) == generation

    def publish(self, key: tuple[str, str], generation: int, result: Any) -> bool:
        with self._lock:
            if self._generations.get(key, 0) != generation:
                return False
            self._results[key] = result
            return True

    def latest(self, key: tuple[str, str]) -> Any | None:
        with self._lock:
            return self._results.get(key)


def _segment_key(segment: str | Segment | None) -> str:
    return Category.for_segment(segment).value


class ArenaService:
    def __init__(
        self,
        store: RatingStore,
        votes: VoteLog,
        seen_pairs: SeenPairStore,
        config: ArenaConfig | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.store = store
        self.votes = votes
        self.seen_pairs = seen_pairs
        self.config = config or ArenaConfig()
        self.rng = rng or random.Random()
        self.jobs = RankingJobs()

    @classmethod
    def from_config(cls, config: ArenaConfig) -> ArenaService:
        if config.data_dir is None:
            return cls(RatingStore(), VoteLog(), InMemorySeenPairs(), config)
        return cls(
            RatingStore(path=config.items_path),
            VoteLog(config.votes_path),
            JsonFileSeenPairs(config.seen_pairs_path),
            config,
        )

    # -- Items -------------------------------------------------------------------

    def add_item(self, item_id: str, url: str) -> RatingRecord:
        return self.store.add_item(item_id, url)

    def set_active(self, item_id: str, active: bool) -> RatingRecord:
        return self.store.set_active(item_id, active)

    # -- Vote path ---------------------------------------------------------------

    def next_pair(self, voter_id: str | None, segment: str | None) -> Pair | PairStatus:
        """Pick the next pair for a voter and mark it as seen."""
        result = select_next_pair(
            self.store.fetch_active_items(),
            self.config.phase,
            segment,
            voter_id,
            self.seen_pairs,
            self.rng,
        )
        if voter_id and not isinstance(result, PairStatus):
            self.seen_pairs.record_seen_pair(voter_id, result[0].id, result[1].id)
        return result

    def submit_vote(
        self,
        voter_id: str,
        segment: str | None,
        winner_id: str,
        loser_id: str,
    ) -> VoteOutcome:
        """Apply one vote.

        Raises ConcurrentUpdateConflict if either record changed since it
        was read; nothing is written in that case and the whole call can be
        retried. If the vote log cannot take the event, the rating write is
        rolled back and the PersistenceError propagates.
        """
        if winner_id == loser_id:
            raise ValueError(f"Winner and loser must differ, got {winner_id!r} twice")
        winner = self.store.get_item(winner_id)
        loser = self.store.get_item(loser_id)

        new_winner, new_loser = apply_vote(winner, loser, segment, self.config.ratings)
        stored_winner, stored_loser = self.store.persist_rating_updates([
            (new_winner, winner.version),
            (new_loser, loser.version),
        ])

        event = VoteEvent.create(winner_id, loser_id, voter_id, segment)
        try:
            self.votes.append_vote_event(event)
        except PersistenceError:
            self._roll_back(winner, loser, stored_winner, stored_loser)
            raise
        self.seen_pairs.record_seen_pair(voter_id, winner_id, loser_id)
        logger.debug("Vote by %s: %s beat %s", voter_id, winner_id, loser_id)
        return VoteOutcome(stored_winner, stored_loser, event)

    def _roll_back(
        self,
        winner: RatingRecord,
        loser: RatingRecord,
        stored_winner: RatingRecord,
        stored_loser: RatingRecord,
    ) -> None:
        """Restore the pre-vote ratings after the vote log refused the event."""
        try:
            self.store.persist_rating_updates([
                (winner, stored_winner.version),
                (loser, stored_loser.version),
            ])
        except (ConcurrentUpdateConflict, PersistenceError) as exc:
            logger.error(
                "Could not roll back ratings of %s and %s after a failed vote append: %s",
                winner.id, loser.id, exc,
            )

    # -- Voter and item stats ----------------------------------------------------

    def voter_vote_count(self, voter_id: str) -> int:
        return self.votes.votes_by(voter_id)

    def voter_status(self, voter_id: str) -> dict[str, Any]:
        cast = self.voter_vote_count(voter_id)
        threshold = self.config.unlock_threshold
        return {
            "voter_id": voter_id,
            "votes_cast": cast,
            "unlocked": cast >= threshold,
            "remaining": max(0, threshold - cast),
        }

    def stats(self, segment: str | None = None, top: int = 5) -> dict[str, Any]:
        category = Category.for_segment(segment)
        items = self.store.fetch_all_items()
        ranked = sorted(items, key=lambda r: (-r.bucket(category).elo, r.id))
        return {
            "category": category.value,
            "total_votes": total_votes(items, category),
            "top": ranked[:top],
        }

    # -- Deferred rankings -------------------------------------------------------

    def request_rankings(self, segment: str | None = None) -> dict[str, int]:
        """Reserve new generations for both ranking jobs of a segment."""
        key = _segment_key(segment)
        return {
            BRADLEY_TERRY: self.jobs.request((BRADLEY_TERRY, key)),
            MONTE_CARLO: self.jobs.request((MONTE_CARLO, key)),
        }

    def run_bradley_terry(
        self,
        segment: str | None,
        generation: int,
        seed: int | None = None,
    ) -> RankingResult | None:
        job = (BRADLEY_TERRY, _segment_key(segment))
        seg_filter = Segment.parse(segment)
        snapshot = self.votes.fetch_vote_log(seg_filter)
        item_ids = [item.id for item in self.store.fetch_all_items()]
        try:
            result = estimate_rankings(
                snapshot,
                item_ids=item_ids,
                n_bootstrap=self.config.bootstrap_samples,
                smoothing=self.config.bt_smoothing,
                seed=seed,
                should_stop=lambda: not self.jobs.is_current(job, generation),
            )
        except ComputationCancelled:
            logger.info("Bradley-Terry run %d for %s superseded", generation, job[1])
            return None
        if not self.jobs.publish(job, generation, result):
            logger.warning("Discarding stale Bradley-Terry result %d for %s", generation, job[1])
            return None
        logger.info(
            "Bradley-Terry ranking for %s ready (%d votes, %d items)",
            job[1], result.n_votes, len(result.entries),
        )
        return result

    def run_monte_carlo(
        self,
        segment: str | None,
        generation: int,
        display_count: int | None = None,
        worst_view: bool = False,
    ) -> SimulationResult | None:
        job = (MONTE_CARLO, _segment_key(segment))
        category = Category.for_segment(segment)
        items = self.store.fetch_all_items()
        displayed = sorted(items, key=lambda r: (-r.bucket(category).glicko, r.id))
        if worst_view:
            displayed.reverse()
        if display_count is not None:
            displayed = displayed[:display_count]
        if not items:
            return None

        result = simulate_rank_uncertainty(
            items,
            displayed,
            segment,
            trial_count=self.config.monte_carlo_trials,
            worst_view=worst_view,
            low_power=self.config.low_power,
            rng=self.rng,
        )
        if not self.jobs.publish(job, generation, result):
            logger.warning("Discarding stale Monte Carlo result %d for %s", generation, job[1])
            return None
        logger.info("Monte Carlo for %s ready (%d trials)", job[1], result.trials)
        return result

    def refresh_rankings(self, segment: str | None = None, seed: int | None = None) -> None:
        """Request and run both jobs synchronously."""
        gens = self.request_rankings(segment)
        self.run_bradley_terry(segment, gens[BRADLEY_TERRY], seed=seed)
        self.run_monte_carlo(segment, gens[MONTE_CARLO])

    def latest_rankings(
        self, segment: str | None = None,
    ) -> tuple[RankingResult | None, SimulationResult | None]:
        key = _segment_key(segment)
        return self.jobs.latest((BRADLEY_TERRY, key)), self.jobs.latest((MONTE_CARLO, key))
