import dataclasses
import random

import pytest

from arena.config import ArenaConfig
from arena.models import Bucket, Category, RatingRecord, VoteEvent
from arena.seen_pairs import InMemorySeenPairs
from arena.service import ArenaService
from arena.store import RatingStore, VoteLog


def make_record(item_id, glicko=1500.0, comparisons=0, rd=350.0, category=Category.OVERALL, **kwargs):
    """RatingRecord with one bucket set; the others keep defaults."""
    record = RatingRecord(id=item_id, url=f"https://img.example/{item_id}.jpg", **kwargs)
    bucket = Bucket(
        elo=round(glicko),
        glicko=glicko,
        rd=rd,
        comparisons=comparisons,
        wins=comparisons // 2,
        losses=comparisons - comparisons // 2,
    )
    return record.with_bucket(category, bucket)


def make_votes(winner, loser, count, voter="v1", segment=None):
    return [VoteEvent.create(winner, loser, voter, segment) for _ in range(count)]


@pytest.fixture
def rng():
    return random.Random(1234)


@pytest.fixture
def items():
    return [make_record(f"p{i}") for i in range(5)]


@pytest.fixture
def config():
    cfg = ArenaConfig()
    cfg.bootstrap_samples = 20
    cfg.monte_carlo_trials = 500
    return cfg


@pytest.fixture
def service(config):
    store = RatingStore()
    for i in range(4):
        store.add_item(f"p{i}", f"https://img.example/p{i}.jpg")
    return ArenaService(store, VoteLog(), InMemorySeenPairs(), config, random.Random(7))


@pytest.fixture
def stale(monkeypatch):
    """Make a store hand out records with a version that no longer matches."""
    def _apply(store):
        fresh_get = store.get_item

        def stale_get(item_id):
            return dataclasses.replace(fresh_get(item_id), version=99)

        monkeypatch.setattr(store, "get_item", stale_get)
    return _apply
