import random

import pytest

from arena.config import ArenaConfig
from arena.errors import ConcurrentUpdateConflict, PersistenceError, UnknownItemError
from arena.models import pair_key
from arena.scheduler import EXHAUSTED
from arena.seen_pairs import InMemorySeenPairs
from arena.service import BRADLEY_TERRY, MONTE_CARLO, ArenaService
from arena.store import RatingStore, VoteLog


def test_next_pair_marks_pair_as_seen(service):
    pair = service.next_pair("v1", None)
    assert service.seen_pairs.get_seen_pairs("v1") == {pair_key(pair[0].id, pair[1].id)}


def test_voter_exhausts_all_pairs(service):
    for _ in range(6):
        assert service.next_pair("v1", "female") is not EXHAUSTED
    assert service.next_pair("v1", "female") is EXHAUSTED


def test_submit_vote_updates_everything(service):
    outcome = service.submit_vote("v1", "male", "p0", "p1")

    assert outcome.winner.overall.elo == 1516
    assert outcome.winner.male.elo == 1516
    assert outcome.loser.overall.elo == 1484
    assert service.store.get_item("p0").version == 1
    assert service.store.get_item("p1").version == 1
    assert service.votes.fetch_vote_log() == (outcome.event,)
    assert service.seen_pairs.get_seen_pairs("v1") == {("p0", "p1")}


def test_submit_vote_rejects_bad_ids(service):
    with pytest.raises(UnknownItemError):
        service.submit_vote("v1", None, "p0", "ghost")
    with pytest.raises(ValueError):
        service.submit_vote("v1", None, "p0", "p0")
    assert len(service.votes) == 0


def test_conflict_leaves_no_trace(service, stale):
    stale(service.store)
    with pytest.raises(ConcurrentUpdateConflict):
        service.submit_vote("v1", None, "p0", "p1")
    assert len(service.votes) == 0
    assert service.seen_pairs.get_seen_pairs("v1") == set()


def test_failed_log_append_restores_ratings(tmp_path, config):
    blocker = tmp_path / "blocker"
    blocker.write_text("")
    store = RatingStore()
    store.add_item("p0", "u")
    store.add_item("p1", "u")
    service = ArenaService(
        store, VoteLog(blocker / "votes.jsonl"), InMemorySeenPairs(), config, random.Random(7),
    )

    with pytest.raises(PersistenceError):
        service.submit_vote("v1", None, "p0", "p1")

    for item_id in ("p0", "p1"):
        record = store.get_item(item_id)
        assert record.overall.elo == 1500
        assert record.overall.comparisons == 0
    assert len(service.votes) == 0
    assert service.seen_pairs.get_seen_pairs("v1") == set()

    # Once the log is writable again the same vote lands exactly once.
    service.votes.path = tmp_path / "votes.jsonl"
    outcome = service.submit_vote("v1", None, "p0", "p1")
    assert outcome.winner.overall.elo == 1516
    assert outcome.winner.overall.comparisons == 1
    assert len(service.votes) == 1


def test_voter_unlock_threshold(service):
    service.config.unlock_threshold = 2
    assert service.voter_status("v1") == {
        "voter_id": "v1", "votes_cast": 0, "unlocked": False, "remaining": 2,
    }
    service.submit_vote("v1", None, "p0", "p1")
    service.submit_vote("v1", None, "p2", "p3")
    assert service.voter_vote_count("v1") == 2
    assert service.voter_status("v1")["unlocked"] is True


def test_stats(service):
    service.submit_vote("v1", None, "p2", "p0")
    stats = service.stats(top=2)
    assert stats["total_votes"] == 1
    assert stats["category"] == "overall"
    assert [r.id for r in stats["top"]] == ["p2", "p1"]


def test_refresh_rankings_publishes_results(service):
    for winner, loser in [("p0", "p1"), ("p0", "p2"), ("p1", "p2"), ("p3", "p0"), ("p0", "p3")]:
        service.submit_vote("v1", None, winner, loser)

    assert service.latest_rankings() == (None, None)
    service.refresh_rankings(seed=1)
    bt, mc = service.latest_rankings()

    assert bt.n_votes == 5
    assert bt.n_bootstrap == 20
    assert {e.item_id for e in bt.entries} == {"p0", "p1", "p2", "p3"}
    assert mc.trials == 500
    assert service.latest_rankings("female") == (None, None)


def test_bradley_terry_uses_configured_smoothing(service):
    service.config.bt_smoothing = 1.0
    for _ in range(5):
        service.submit_vote("v1", None, "p0", "p1")

    service.refresh_rankings(seed=1)
    bt, _ = service.latest_rankings()
    strengths = bt.strengths()

    assert bt.converged
    assert strengths["p0"] / strengths["p1"] == pytest.approx(6.0, rel=1e-3)


def test_superseded_jobs_are_dropped(service):
    service.submit_vote("v1", None, "p0", "p1")
    old = service.request_rankings()
    new = service.request_rankings()

    assert service.run_bradley_terry(None, old[BRADLEY_TERRY]) is None
    assert service.run_monte_carlo(None, old[MONTE_CARLO]) is None
    assert service.latest_rankings() == (None, None)

    assert service.run_bradley_terry(None, new[BRADLEY_TERRY]) is not None
    assert service.run_monte_carlo(None, new[MONTE_CARLO]) is not None


def test_from_config_persists_to_data_dir(tmp_path):
    cfg = ArenaConfig(data_dir=tmp_path)
    first = ArenaService.from_config(cfg)
    first.add_item("a", "u")
    first.add_item("b", "u")
    first.next_pair("v1", None)
    first.submit_vote("v1", None, "a", "b")

    second = ArenaService.from_config(cfg)
    assert second.store.get_item("a").overall.elo == 1516
    assert len(second.votes) == 1
    assert second.seen_pairs.get_seen_pairs("v1") == {("a", "b")}
    assert second.next_pair("v1", None) is EXHAUSTED
