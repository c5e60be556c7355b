from analysis.pairwise_matrix import build_win_matrix, compute_pairwise_matrix, games_between, print_matrix
from tests.conftest import make_votes


def test_build_win_matrix():
    votes = make_votes("a", "b", 3) + make_votes("b", "a", 1) + make_votes("c", "a", 2)
    names, wins = build_win_matrix(votes, item_ids=["z"])

    assert names == ["a", "b", "c", "z"]
    assert wins["a"] == {"b": 3}
    assert wins["c"] == {"a": 2}
    assert games_between(wins, "a", "b") == 4
    assert games_between(wins, "b", "c") == 0


def test_compute_pairwise_matrix():
    votes = make_votes("a", "b", 3) + make_votes("b", "a", 1)
    items, win_rates, game_counts = compute_pairwise_matrix(votes)

    assert items == ["a", "b"]
    assert win_rates[("a", "b")] == 0.75
    assert win_rates[("b", "a")] == 0.25
    assert win_rates[("a", "a")] == 0.5
    assert game_counts[("a", "b")] == 4


def test_print_matrix(capsys):
    items, win_rates, game_counts = compute_pairwise_matrix(make_votes("a", "b", 1))
    print_matrix(items, win_rates, game_counts)
    out = capsys.readouterr().out
    assert "100.0%" in out
    assert "--" in out
