import random

import pytest

from arena.models import Bucket, Category, RatingRecord
from arena.ratings import (
    MIN_RD,
    RatingConfig,
    apply_vote,
    categories_for,
    decay_record,
    expected_score,
    inflate_rd,
    update_elo,
    update_glicko,
)
from tests.conftest import make_record


def test_fresh_pair_moves_sixteen_points():
    assert update_elo(1500, 1500) == (1516, 1484)


def test_expected_score_is_symmetric():
    assert expected_score(1600, 1400) + expected_score(1400, 1600) == pytest.approx(1.0)
    assert expected_score(1500, 1500) == pytest.approx(0.5)


@pytest.mark.parametrize("winner,loser", [(1200, 1800), (1500, 1500), (1499, 1500), (1000, 2400)])
def test_underdog_or_equal_winner_gains(winner, loser):
    new_w, new_l = update_elo(winner, loser)
    assert new_w > winner
    assert new_l < loser


def test_elo_change_bounded_by_k():
    rng = random.Random(3)
    for _ in range(200):
        w, l = rng.randint(800, 2600), rng.randint(800, 2600)
        new_w, new_l = update_elo(w, l)
        assert 0 <= new_w - w <= 32
        assert 0 <= l - new_l <= 32


def test_first_vote_scenario():
    winner, loser = apply_vote(make_record("a"), make_record("b"), None)

    assert winner.overall.elo == 1516
    assert loser.overall.elo == 1484
    assert winner.overall.glicko > 1500
    assert loser.overall.glicko < 1500
    assert winner.overall.rd < 350
    assert loser.overall.rd < 350
    assert (winner.overall.wins, winner.overall.losses, winner.overall.comparisons) == (1, 0, 1)
    assert (loser.overall.wins, loser.overall.losses, loser.overall.comparisons) == (0, 1, 1)


def test_segment_vote_updates_overall_and_segment_only():
    winner, loser = apply_vote(make_record("a"), make_record("b"), "female")

    assert winner.female.elo == 1516
    assert winner.overall.elo == 1516
    assert winner.male == Bucket()
    assert loser.male == Bucket()


def test_unknown_segment_touches_overall_only():
    assert categories_for("robot") == [Category.OVERALL]
    assert categories_for("M") == [Category.OVERALL, Category.MALE]
    winner, _ = apply_vote(make_record("a"), make_record("b"), "robot")
    assert winner.male == Bucket()
    assert winner.female == Bucket()


def test_apply_vote_leaves_version_alone():
    winner, loser = apply_vote(make_record("a"), make_record("b"), None)
    assert winner.version == 0
    assert loser.version == 0


def test_item_cannot_beat_itself():
    rec = make_record("a")
    with pytest.raises(ValueError):
        apply_vote(rec, rec, None)


def test_rd_never_increases_and_stays_above_floor():
    a, b = make_record("a"), make_record("b")
    rng = random.Random(11)
    for _ in range(300):
        before_a, before_b = a.overall.rd, b.overall.rd
        if rng.random() < 0.5:
            a, b = apply_vote(a, b, None)
        else:
            b, a = apply_vote(b, a, None)
        assert a.overall.rd <= before_a
        assert b.overall.rd <= before_b
        assert a.overall.rd >= MIN_RD
        assert b.overall.rd >= MIN_RD
    assert a.overall.rd == pytest.approx(MIN_RD)


def test_counters_stay_consistent():
    records = {f"p{i}": make_record(f"p{i}") for i in range(4)}
    rng = random.Random(5)
    segments = [None, "male", "female"]
    for _ in range(100):
        w, l = rng.sample(sorted(records), 2)
        records[w], records[l] = apply_vote(records[w], records[l], rng.choice(segments))

    for record in records.values():
        for category in Category:
            b = record.bucket(category)
            assert b.comparisons == b.wins + b.losses
    assert sum(r.overall.comparisons for r in records.values()) == 200


def test_glicko_update_respects_custom_floor():
    _, rd = update_glicko(1500, 60.0, 1500, 60.0, 1.0, min_rd=59.9)
    assert rd == pytest.approx(59.9)


def test_inflate_rd():
    assert inflate_rd(50.0, 10, 20.0) == pytest.approx((50.0 ** 2 + 400 * 10) ** 0.5)
    assert inflate_rd(300.0, 1000, 20.0) == 350.0
    assert inflate_rd(50.0, 10, 0.0) == 50.0
    assert inflate_rd(50.0, 0, 20.0) == 50.0


def test_decay_record_inflates_every_bucket():
    record = RatingRecord(id="a", url="u")
    for category in Category:
        record = record.with_bucket(category, Bucket(rd=40.0))
    decayed = decay_record(record, 4, RatingConfig(rd_inflation_c=15.0))
    for category in Category:
        assert decayed.bucket(category).rd == pytest.approx((40.0 ** 2 + 225 * 4) ** 0.5)


def test_custom_k_factor():
    cfg = RatingConfig(k_factor=16)
    winner, loser = apply_vote(make_record("a"), make_record("b"), None, cfg)
    assert winner.overall.elo == 1508
    assert loser.overall.elo == 1492
