"""Incremental rating updates: Elo (display) + simplified Glicko (uncertainty).

Every vote updates the overall bucket and the bucket of the voter's declared
segment. Glicko is applied per single comparison rather than per rating
period, so RD only ever shrinks; ``min_rd`` keeps it from collapsing and
``inflate_rd`` is available to callers that want to re-open uncertainty
for items that sat idle.
"""

from __future__ import annotations

import dataclasses
import logging
import math
from dataclasses import dataclass

from arena.models import (
    DEFAULT_RATING,
    DEFAULT_RD,
    Bucket,
    Category,
    RatingRecord,
    Segment,
)

logger = logging.getLogger(__name__)

K_FACTOR = 32
Q = math.log(10) / 400.0
MIN_RD = 30.0


@dataclass
class RatingConfig:
    k_factor: float = K_FACTOR
    default_rating: int = DEFAULT_RATING
    default_rd: float = DEFAULT_RD
    min_rd: float = MIN_RD
    max_rd: float = DEFAULT_RD
    rd_inflation_c: float = 0.0


# -- Elo ----------------------------------------------------------------------


def expected_score(rating_a: float, rating_b: float) -> float:
    return 1.0 / (1.0 + 10.0 ** ((rating_b - rating_a) / 400.0))


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def update_elo(
    winner_elo: float,
    loser_elo: float,
    k: float = K_FACTOR,
) -> tuple[int, int]:
    expected_w = expected_score(winner_elo, loser_elo)
    expected_l = 1.0 - expected_w

    new_winner = _round_half_up(winner_elo + k * (1.0 - expected_w))
    new_loser = _round_half_up(loser_elo + k * (0.0 - expected_l))
    return new_winner, new_loser


# -- Glicko -------------------------------------------------------------------


def g(rd: float) -> float:
    return 1.0 / math.sqrt(1.0 + 3.0 * Q * Q * rd * rd / (math.pi * math.pi))


def glicko_expected(mu: float, mu_opp: float, rd_opp: float) -> float:
    return 1.0 / (1.0 + 10.0 ** (-g(rd_opp) * (mu - mu_opp) / 400.0))


def update_glicko(
    mu: float,
    rd: float,
    mu_opp: float,
    rd_opp: float,
    score: float,
    min_rd: float = MIN_RD,
) -> tuple[float, float]:
    """One-comparison Glicko step. ``score`` is 1 for a win, 0 for a loss.

    The returned RD is floored at ``min_rd`` but never exceeds the input RD.
    """
    g_opp = g(rd_opp)
    e = glicko_expected(mu, mu_opp, rd_opp)
    v = Q * Q * g_opp * g_opp * e * (1.0 - e)
    precision = 1.0 / (rd * rd) + v

    new_mu = mu + Q * g_opp * (score - e) / precision
    new_rd = math.sqrt(1.0 / precision)
    new_rd = min(rd, max(new_rd, min_rd))
    return new_mu, new_rd


def inflate_rd(rd: float, periods: float, c: float, max_rd: float = DEFAULT_RD) -> float:
    """Grow RD for ``periods`` of inactivity (Glicko step 1)."""
    if periods <= 0 or c <= 0:
        return rd
    return min(math.sqrt(rd * rd + c * c * periods), max_rd)


def decay_record(
    record: RatingRecord,
    periods: float,
    config: RatingConfig | None = None,
) -> RatingRecord:
    cfg = config or RatingConfig()
    for category in Category:
        b = record.bucket(category)
        new_rd = inflate_rd(b.rd, periods, cfg.rd_inflation_c, cfg.max_rd)
        if new_rd != b.rd:
            record = record.with_bucket(category, dataclasses.replace(b, rd=new_rd))
    return record


# -- Vote application ---------------------------------------------------------


def categories_for(voter_segment: str | Segment | None) -> list[Category]:
    """Buckets touched by a vote: overall, plus the voter's segment if known."""
    categories = [Category.OVERALL]
    segment_category = Category.for_segment(voter_segment)
    if segment_category is not Category.OVERALL:
        categories.append(segment_category)
    return categories


def _update_pair(
    winner: Bucket,
    loser: Bucket,
    cfg: RatingConfig,
) -> tuple[Bucket, Bucket]:
    new_w_elo, new_l_elo = update_elo(winner.elo, loser.elo, cfg.k_factor)

    # Both sides use the opponent's pre-update rating and RD.
    w_mu, w_rd = update_glicko(winner.glicko, winner.rd, loser.glicko, loser.rd, 1.0, cfg.min_rd)
    l_mu, l_rd = update_glicko(loser.glicko, loser.rd, winner.glicko, winner.rd, 0.0, cfg.min_rd)

    new_winner = dataclasses.replace(
        winner,
        elo=new_w_elo,
        glicko=w_mu,
        rd=w_rd,
        comparisons=winner.comparisons + 1,
        wins=winner.wins + 1,
    )
    new_loser = dataclasses.replace(
        loser,
        elo=new_l_elo,
        glicko=l_mu,
        rd=l_rd,
        comparisons=loser.comparisons + 1,
        losses=loser.losses + 1,
    )
    return new_winner, new_loser


def apply_vote(
    winner: RatingRecord,
    loser: RatingRecord,
    voter_segment: str | Segment | None,
    config: RatingConfig | None = None,
) -> tuple[RatingRecord, RatingRecord]:
    """Return updated (winner, loser) records for one vote.

    Pure: nothing is persisted, versions are left for the store to bump.
    """
    if winner.id == loser.id:
        raise ValueError(f"An item cannot beat itself: {winner.id!r}")
    cfg = config or RatingConfig()

    for category in categories_for(voter_segment):
        new_w, new_l = _update_pair(winner.bucket(category), loser.bucket(category), cfg)
        logger.debug(
            "%s: %s %d->%d (rd %.1f) beat %s %d->%d (rd %.1f)",
            category.value,
            winner.id, winner.bucket(category).elo, new_w.elo, new_w.rd,
            loser.id, loser.bucket(category).elo, new_l.elo, new_l.rd,
        )
        winner = winner.with_bucket(category, new_w)
        loser = loser.with_bucket(category, new_l)

    return winner, loser
