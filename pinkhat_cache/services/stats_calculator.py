"""
Derived-state calculations for game results.

Pure functions only: ranking participants within a game and folding a
player's participations into an aggregate. Nothing here touches the
database or the chain, so the synchronizer and the query fallback path
produce identical shapes from identical events.
"""

from dataclasses import dataclass, replace
from enum import Enum
from typing import Iterable, List, Optional, Sequence, Tuple


class ScoreDirection(str, Enum):
    """Which end of the score range wins."""
    DESCENDING = "descending"  # higher is better
    ASCENDING = "ascending"  # lower is better

    @classmethod
    def from_flag(cls, is_descending: bool) -> "ScoreDirection":
        return cls.DESCENDING if is_descending else cls.ASCENDING

    @property
    def is_descending(self) -> bool:
        return self is ScoreDirection.DESCENDING

    @property
    def scoring_mode(self) -> str:
        return "Higher scores better" if self.is_descending else "Lower scores better"

    def is_better(self, candidate: int, current: int) -> bool:
        """True when candidate strictly beats current."""
        if self.is_descending:
            return candidate > current
        return candidate < current


@dataclass(frozen=True)
class RankedParticipant:
    address: str
    score: int
    position: int
    input_index: int


@dataclass(frozen=True)
class ParticipationEntry:
    """One game's contribution to a player's aggregate."""
    score: int
    is_winner: bool
    equipped_hat: Optional[int] = None


@dataclass(frozen=True)
class PlayerAggregate:
    address: str
    best_score: Optional[int] = None
    total_wins: int = 0
    total_games: int = 0
    equipped_hat: int = 0
    has_played: bool = False


def rank_participants(
    participants: Sequence[Tuple[str, int]],
    direction: ScoreDirection
) -> List[RankedParticipant]:
    """
    Order participants by score and assign 1-based positions.

    Ties keep their original relative order.

    Args:
        participants: (address, score) pairs in event order
        direction: ranking direction for this game

    Returns:
        Participants in rank order, positions 1..N
    """
    sign = -1 if direction.is_descending else 1
    ordered = sorted(
        enumerate(participants),
        key=lambda item: sign * item[1][1]
    )
    return [
        RankedParticipant(
            address=address,
            score=score,
            position=position,
            input_index=index,
        )
        for position, (index, (address, score)) in enumerate(ordered, start=1)
    ]


def fold_player_stats(
    existing: Optional[PlayerAggregate],
    entry: ParticipationEntry,
    direction: ScoreDirection,
    address: Optional[str] = None,
) -> PlayerAggregate:
    """
    Fold one participation into a player's aggregate.

    Args:
        existing: aggregate so far, or None for a player's first game
        entry: the new participation
        direction: ranking direction of the game the entry comes from
        address: player address, required when existing is None

    Returns:
        A new aggregate; existing is left untouched
    """
    if existing is None:
        if address is None:
            raise ValueError("address is required to start a new aggregate")
        return PlayerAggregate(
            address=address,
            best_score=entry.score,
            total_wins=1 if entry.is_winner else 0,
            total_games=1,
            equipped_hat=entry.equipped_hat or 0,
            has_played=True,
        )

    best_score = existing.best_score
    if best_score is None or direction.is_better(entry.score, best_score):
        best_score = entry.score

    return replace(
        existing,
        best_score=best_score,
        total_wins=existing.total_wins + (1 if entry.is_winner else 0),
        total_games=existing.total_games + 1,
        equipped_hat=entry.equipped_hat if entry.equipped_hat is not None else existing.equipped_hat,
        has_played=True,
    )


def replay_player_stats(
    address: str,
    history: Iterable[Tuple[ParticipationEntry, ScoreDirection]],
) -> Optional[PlayerAggregate]:
    """Fold a player's full history, oldest game first, from empty state."""
    aggregate: Optional[PlayerAggregate] = None
    for entry, direction in history:
        aggregate = fold_player_stats(aggregate, entry, direction, address=address)
    return aggregate


def sort_by_best_score(
    aggregates: Iterable[PlayerAggregate],
    direction: ScoreDirection,
) -> List[PlayerAggregate]:
    """Best score first under direction, ties by address; players without a score go last."""
    sign = -1 if direction.is_descending else 1
    return sorted(
        aggregates,
        key=lambda agg: (
            not agg.has_played or agg.best_score is None,
            sign * (agg.best_score or 0),
            agg.address,
        )
    )


def sort_for_leaderboard(
    aggregates: Iterable[PlayerAggregate],
    direction: ScoreDirection,
) -> List[PlayerAggregate]:
    """Wins first, then best score under direction, then address. Unplayed players are dropped."""
    sign = -1 if direction.is_descending else 1
    played = [agg for agg in aggregates if agg.has_played and agg.best_score is not None]
    return sorted(played, key=lambda agg: (-agg.total_wins, sign * agg.best_score, agg.address))
