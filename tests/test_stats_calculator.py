"""
Test ranking and per-player folding.
"""

import pytest

from pinkhat_cache.services.stats_calculator import (
    ParticipationEntry,
    PlayerAggregate,
    ScoreDirection,
    fold_player_stats,
    rank_participants,
    replay_player_stats,
    sort_by_best_score,
    sort_for_leaderboard,
)


A = "0x" + "a" * 40
B = "0x" + "b" * 40
C = "0x" + "c" * 40


def test_descending_ranking():
    ranked = rank_participants([(A, 50), (B, 80), (C, 20)], ScoreDirection.DESCENDING)

    assert [(r.address, r.position) for r in ranked] == [(B, 1), (A, 2), (C, 3)]
    assert [r.input_index for r in ranked] == [1, 0, 2]


def test_ascending_ranking_keeps_input_order_for_ties():
    ranked = rank_participants([(A, 10), (B, 10), (C, 5)], ScoreDirection.ASCENDING)

    assert [(r.address, r.position) for r in ranked] == [(C, 1), (A, 2), (B, 3)]


def test_positions_are_a_permutation():
    participants = [("0x" + str(i) * 40, score) for i, score in enumerate([7, 3, 7, 9, 0, 3])]

    for direction in ScoreDirection:
        ranked = rank_participants(participants, direction)
        assert sorted(r.position for r in ranked) == list(range(1, len(participants) + 1))
        scores = [r.score for r in ranked]
        assert scores == sorted(scores, reverse=direction.is_descending)


def test_first_fold():
    aggregate = fold_player_stats(
        None,
        ParticipationEntry(score=42, is_winner=True, equipped_hat=5),
        ScoreDirection.DESCENDING,
        address=A,
    )

    assert aggregate == PlayerAggregate(
        address=A, best_score=42, total_wins=1, total_games=1, equipped_hat=5, has_played=True
    )


def test_first_fold_requires_address():
    with pytest.raises(ValueError):
        fold_player_stats(None, ParticipationEntry(score=1, is_winner=False), ScoreDirection.DESCENDING)


def test_worse_score_keeps_best():
    existing = PlayerAggregate(address=A, best_score=100, total_wins=2, total_games=3, has_played=True)

    folded = fold_player_stats(existing, ParticipationEntry(score=50, is_winner=False), ScoreDirection.DESCENDING)

    assert folded.best_score == 100
    assert folded.total_games == 4
    assert folded.total_wins == 2
    assert existing.total_games == 3


def test_lower_score_improves_when_ascending():
    existing = PlayerAggregate(address=A, best_score=30, total_wins=0, total_games=1, has_played=True)

    folded = fold_player_stats(existing, ParticipationEntry(score=20, is_winner=True), ScoreDirection.ASCENDING)

    assert folded.best_score == 20
    assert folded.total_wins == 1


def test_equal_score_is_not_an_improvement():
    assert not ScoreDirection.DESCENDING.is_better(10, 10)
    assert not ScoreDirection.ASCENDING.is_better(10, 10)


def test_replay_is_deterministic():
    history = [
        (ParticipationEntry(score=10, is_winner=False), ScoreDirection.DESCENDING),
        (ParticipationEntry(score=30, is_winner=True, equipped_hat=2), ScoreDirection.DESCENDING),
        (ParticipationEntry(score=20, is_winner=False), ScoreDirection.DESCENDING),
    ]

    first = replay_player_stats(A, history)
    second = replay_player_stats(A, history)

    assert first == second
    assert first.best_score == 30
    assert first.total_games == 3
    assert first.total_wins == 1
    assert first.equipped_hat == 2


def test_replay_of_nothing_is_none():
    assert replay_player_stats(A, []) is None


def test_leaderboard_sort_uses_wins_then_best_score():
    aggregates = [
        PlayerAggregate(address=A, best_score=90, total_wins=1, total_games=4, has_played=True),
        PlayerAggregate(address=B, best_score=50, total_wins=3, total_games=5, has_played=True),
        PlayerAggregate(address=C, best_score=95, total_wins=1, total_games=2, has_played=True),
        PlayerAggregate(address="0x" + "d" * 40),
    ]

    descending = sort_for_leaderboard(aggregates, ScoreDirection.DESCENDING)
    ascending = sort_for_leaderboard(aggregates, ScoreDirection.ASCENDING)

    assert [agg.address for agg in descending] == [B, C, A]
    assert [agg.address for agg in ascending] == [B, A, C]


def test_best_score_sort_puts_unplayed_last():
    unplayed = PlayerAggregate(address=C)
    aggregates = [
        unplayed,
        PlayerAggregate(address=A, best_score=12, total_games=1, has_played=True),
        PlayerAggregate(address=B, best_score=4, total_games=1, has_played=True),
    ]

    assert [agg.address for agg in sort_by_best_score(aggregates, ScoreDirection.ASCENDING)] == [B, A, C]
    assert [agg.address for agg in sort_by_best_score(aggregates, ScoreDirection.DESCENDING)] == [A, B, C]


def test_ties_are_broken_by_address():
    aggregates = [
        PlayerAggregate(address=C, best_score=50, total_wins=0, total_games=1, has_played=True),
        PlayerAggregate(address=A, best_score=50, total_wins=0, total_games=1, has_played=True),
        PlayerAggregate(address=B, best_score=50, total_wins=0, total_games=1, has_played=True),
    ]

    assert [agg.address for agg in sort_for_leaderboard(aggregates, ScoreDirection.DESCENDING)] == [A, B, C]
    assert [agg.address for agg in sort_by_best_score(reversed(aggregates), ScoreDirection.ASCENDING)] == [A, B, C]
