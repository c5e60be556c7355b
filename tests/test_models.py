from datetime import datetime, timezone

import pytest

from arena.models import (
    Bucket,
    Category,
    RatingRecord,
    Segment,
    VoteEvent,
    changed_fields,
    pair_key,
)


@pytest.mark.parametrize("raw,expected", [
    ("male", Segment.MALE),
    ("Man", Segment.MALE),
    (" m ", Segment.MALE),
    ("female", Segment.FEMALE),
    ("WOMAN", Segment.FEMALE),
    ("f", Segment.FEMALE),
    ("other", None),
    (None, None),
])
def test_segment_parse(raw, expected):
    assert Segment.parse(raw) is expected


def test_category_for_segment():
    assert Category.for_segment("male") is Category.MALE
    assert Category.for_segment(Segment.FEMALE) is Category.FEMALE
    assert Category.for_segment(None) is Category.OVERALL
    assert Category.for_segment("nonbinary") is Category.OVERALL


def test_bucket_accessors():
    record = RatingRecord(id="a", url="u")
    updated = record.with_bucket(Category.MALE, Bucket(elo=1600))
    assert updated.bucket(Category.MALE).elo == 1600
    assert updated.bucket(Category.OVERALL).elo == 1500
    assert record.male.elo == 1500


def test_row_round_trip():
    record = RatingRecord(
        id="a",
        url="https://img.example/a.jpg",
        overall=Bucket(elo=1532, glicko=1540.5, rd=210.25, comparisons=4, wins=3, losses=1),
        female=Bucket(elo=1516, glicko=1520.0, rd=290.0, comparisons=1, wins=1, losses=0),
        active=False,
        version=7,
    )
    row = record.to_row()
    assert row["rating_overall"] == 1532
    assert row["glicko_female_rd"] == 290.0
    assert row["wins_overall"] == 3
    assert RatingRecord.from_row(row) == record


def test_sparse_row_gets_defaults():
    record = RatingRecord.from_row({"id": "x", "url": "u", "rating_male": 1610})
    assert record.male.elo == 1610
    assert record.overall == Bucket()
    assert record.active is True
    assert record.version == 0


@pytest.mark.parametrize("raw, expected", [
    ("false", False),
    ("False", False),
    ("0", False),
    ("true", True),
    (0, False),
    (True, True),
])
def test_active_flag_from_text_row(raw, expected):
    record = RatingRecord.from_row({"id": "x", "url": "u", "active": raw})
    assert record.active is expected


def test_active_flag_rejects_garbage():
    with pytest.raises(ValueError):
        RatingRecord.from_row({"id": "x", "url": "u", "active": "maybe"})


def test_row_without_id_rejected():
    with pytest.raises(ValueError):
        RatingRecord.from_row({"url": "u"})


def test_changed_fields_lists_only_differences():
    old = RatingRecord(id="a", url="u")
    new = old.with_bucket(Category.OVERALL, Bucket(elo=1516, comparisons=1, wins=1))
    assert changed_fields(old, new) == {
        "rating_overall": 1516,
        "comparisons_overall": 1,
        "wins_overall": 1,
    }


def test_pair_key_is_unordered():
    assert pair_key("b", "a") == ("a", "b")
    assert pair_key("a", "b") == ("a", "b")
    with pytest.raises(ValueError):
        pair_key("a", "a")


def test_vote_event_canonical_order():
    event = VoteEvent.create("zeta", "alpha", "voter-1", "female")
    assert event.key == ("alpha", "zeta")
    assert event.winner == "zeta"
    assert event.loser == "alpha"
    assert event.timestamp.tzinfo is not None


def test_vote_event_rejects_outsider_winner():
    with pytest.raises(ValueError):
        VoteEvent("a", "b", "c", "v", None, datetime.now(timezone.utc))
    with pytest.raises(ValueError):
        VoteEvent("b", "a", "a", "v", None, datetime.now(timezone.utc))


def test_vote_event_dict_uses_log_column_names():
    ts = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)
    event = VoteEvent.create("a", "b", "voter-1", "male", timestamp=ts)
    data = event.to_dict()
    assert data == {
        "image_a_id": "a",
        "image_b_id": "b",
        "winner_id": "a",
        "user_id": "voter-1",
        "user_gender": "male",
        "timestamp": "2024-03-01T12:00:00+00:00",
    }
    assert VoteEvent.from_dict(data) == event


def test_vote_event_from_dict_accepts_unordered_columns():
    event = VoteEvent.from_dict({"image_a_id": "b", "image_b_id": "a", "winner_id": "b", "user_id": "v"})
    assert event.key == ("a", "b")
    assert event.winner == "b"
    assert event.segment is None


def test_vote_event_naive_timestamp_read_as_utc():
    naive = VoteEvent.from_dict({
        "image_a_id": "a", "image_b_id": "b", "winner_id": "a",
        "timestamp": "2024-03-01T12:00:00",
    })
    aware = VoteEvent.from_dict({
        "image_a_id": "a", "image_b_id": "b", "winner_id": "a",
        "timestamp": "2024-03-01T13:00:00+00:00",
    })
    assert naive.timestamp == datetime(2024, 3, 1, 12, tzinfo=timezone.utc)
    assert sorted([aware, naive], key=lambda v: v.timestamp) == [naive, aware]
