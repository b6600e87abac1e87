"""
Event parsing and validation for GameManager events.

Turns the loosely-typed logs returned by the event source into tagged
event variants with every required field present and checked. Anything
malformed is rejected with ValidationError so a single bad log never
reaches the calculator or the store.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

from web3 import Web3

from pinkhat_cache.core.exceptions import InvalidAddressError, ValidationError


class EventType(Enum):
    """Contract events consumed by the cache."""
    GAME_SUBMITTED = "GameSubmitted"
    SCORE_ORDERING_CHANGED = "ScoreOrderingChanged"


@dataclass
class ChainEvent:
    """A log as delivered by the event source, before validation."""
    event_type: EventType
    sequence_id: Optional[int]
    block_number: int
    transaction_hash: str
    log_index: int = 0
    payload: Dict[str, Any] = field(default_factory=dict)

    @property
    def ordering_key(self) -> Tuple[int, int]:
        return (self.block_number, self.log_index)


@dataclass(frozen=True)
class GameSubmittedEvent:
    """Validated GameSubmitted event. players and scores are index-aligned."""
    sequence_id: int
    block_number: int
    transaction_hash: str
    winner: str
    players: Tuple[str, ...]
    scores: Tuple[int, ...]

    @property
    def game_id(self) -> int:
        return self.sequence_id

    @property
    def player_count(self) -> int:
        return len(self.players)

    @property
    def participants(self) -> List[Tuple[str, int]]:
        return list(zip(self.players, self.scores))


@dataclass(frozen=True)
class ScoreOrderingChangedEvent:
    """Validated ScoreOrderingChanged event."""
    sequence_id: int
    block_number: int
    transaction_hash: str
    is_descending: bool


ParsedEvent = Union[GameSubmittedEvent, ScoreOrderingChangedEvent]

# Largest value the BIGINT id and score columns hold
MAX_BIGINT = 2 ** 63 - 1


def normalize_address(value: Any) -> str:
    """Return the EIP-55 checksum form of an address or raise InvalidAddressError."""
    if not isinstance(value, str) or not Web3.is_address(value):
        raise InvalidAddressError(value)
    return Web3.to_checksum_address(value)


def _require(payload: Dict[str, Any], key: str, event: ChainEvent) -> Any:
    if key not in payload or payload[key] is None:
        raise ValidationError(
            f"Missing field '{key}' in {event.event_type.value} event",
            {"transaction_hash": event.transaction_hash, "field": key}
        )
    return payload[key]


def _non_negative_int(value: Any, name: str) -> int:
    # bool is an int subclass; a flag is never a valid count or score
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"Field '{name}' must be an integer", {"field": name, "value": repr(value)})
    if value < 0:
        raise ValidationError(f"Field '{name}' must not be negative", {"field": name, "value": value})
    return value


def _validate_envelope(event: ChainEvent) -> None:
    _non_negative_int(event.block_number, "block_number")
    if not isinstance(event.transaction_hash, str) or not event.transaction_hash:
        raise ValidationError("Missing transaction hash", {"block_number": event.block_number})


def parse_game_submitted(event: ChainEvent) -> GameSubmittedEvent:
    """Validate a GameSubmitted log."""
    _validate_envelope(event)
    payload = event.payload or {}

    game_id = event.sequence_id if event.sequence_id is not None else payload.get("gameId")
    if game_id is None:
        raise ValidationError(
            "Missing game id in GameSubmitted event",
            {"transaction_hash": event.transaction_hash}
        )
    game_id = _non_negative_int(game_id, "gameId")
    if game_id == 0 or game_id > MAX_BIGINT:
        raise ValidationError("Game id out of range", {"transaction_hash": event.transaction_hash, "game_id": game_id})

    winner = normalize_address(_require(payload, "winner", event))
    raw_players = _require(payload, "players", event)
    raw_scores = _require(payload, "scores", event)

    if not isinstance(raw_players, (list, tuple)) or not isinstance(raw_scores, (list, tuple)):
        raise ValidationError(
            "players and scores must be arrays",
            {"game_id": game_id}
        )
    if not raw_players:
        raise ValidationError("Game has no players", {"game_id": game_id})
    if len(raw_players) != len(raw_scores):
        raise ValidationError(
            "players and scores lengths differ",
            {"game_id": game_id, "players": len(raw_players), "scores": len(raw_scores)}
        )

    declared_count = payload.get("playerCount")
    if declared_count is not None and _non_negative_int(declared_count, "playerCount") != len(raw_players):
        raise ValidationError(
            "playerCount does not match players length",
            {"game_id": game_id, "player_count": declared_count, "players": len(raw_players)}
        )

    players = tuple(normalize_address(player) for player in raw_players)
    if len(set(players)) != len(players):
        raise ValidationError("Duplicate player in game", {"game_id": game_id})

    scores = tuple(_non_negative_int(score, "scores") for score in raw_scores)
    if any(score > MAX_BIGINT for score in scores):
        raise ValidationError(
            "Score exceeds the storable range",
            {"game_id": game_id, "max_score": MAX_BIGINT}
        )

    return GameSubmittedEvent(
        sequence_id=game_id,
        block_number=event.block_number,
        transaction_hash=event.transaction_hash,
        winner=winner,
        players=players,
        scores=scores,
    )


def parse_score_ordering_changed(event: ChainEvent) -> ScoreOrderingChangedEvent:
    """Validate a ScoreOrderingChanged log."""
    _validate_envelope(event)
    is_descending = _require(event.payload or {}, "isDescendingOrder", event)
    if not isinstance(is_descending, bool):
        raise ValidationError(
            "isDescendingOrder must be a boolean",
            {"transaction_hash": event.transaction_hash, "value": repr(is_descending)}
        )
    return ScoreOrderingChangedEvent(
        sequence_id=event.sequence_id if event.sequence_id is not None else event.log_index,
        block_number=event.block_number,
        transaction_hash=event.transaction_hash,
        is_descending=is_descending,
    )


_PARSERS = {
    EventType.GAME_SUBMITTED: parse_game_submitted,
    EventType.SCORE_ORDERING_CHANGED: parse_score_ordering_changed,
}


def parse_chain_event(event: ChainEvent) -> ParsedEvent:
    """
    Validate a raw chain event into its tagged variant.

    Raises:
        ValidationError: if the payload is missing fields or inconsistent
    """
    parser = _PARSERS.get(event.event_type)
    if parser is None:
        raise ValidationError(f"Unsupported event type: {event.event_type}")
    return parser(event)
