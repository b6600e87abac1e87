"""
Cache store for mirrored game data.

Owns the four cache tables (games, game_participants, player_stats,
sync_state). All writes are idempotent upserts, and a game's rows plus
the aggregates of its players are written as one transaction so a
failure never leaves a half-written game behind.
"""

from contextlib import asynccontextmanager
from dataclasses import asdict, dataclass, replace
from datetime import datetime
from typing import AsyncGenerator, Callable, Dict, List, Optional, Sequence

import structlog
from sqlalchemy import distinct, func, select
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from pinkhat_cache.core import database
from pinkhat_cache.core.exceptions import StorageFaultError
from pinkhat_cache.models import CHECKPOINT_ID, Game, GameParticipant, PlayerStats, SyncState
from pinkhat_cache.models.base import utcnow
from pinkhat_cache.services.stats_calculator import (
    ParticipationEntry,
    PlayerAggregate,
    ScoreDirection,
    replay_player_stats,
)


logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class GameRecord:
    game_id: int
    block_number: int
    transaction_hash: str
    winner_address: str
    player_count: int
    is_descending_order: bool


@dataclass(frozen=True)
class ParticipantRecord:
    game_id: int
    player_address: str
    score: int
    position: int
    equipped_hat_id: int = 0
    hat_type: Optional[str] = None


@dataclass(frozen=True)
class PlayerGameEntry:
    """One row of a player's game history."""
    game_id: int
    score: int
    position: int
    equipped_hat_id: int
    hat_type: Optional[str]
    won: bool
    is_descending_order: bool
    created_at: Optional[datetime]


@dataclass(frozen=True)
class TopScoreEntry:
    game_id: int
    player_address: str
    score: int
    equipped_hat_id: int
    hat_type: Optional[str]
    block_number: int
    transaction_hash: str
    created_at: Optional[datetime]


@dataclass(frozen=True)
class TopPlayerEntry:
    player_address: str
    best_score: int
    games_played: int
    last_game_time: Optional[datetime]


_INSERTS = {
    "sqlite": sqlite_insert,
    "postgresql": postgresql_insert,
}


class CacheStore:
    """
    Persistence layer for the game cache.

    Each operation opens its own session unless one is passed in, which
    lets the synchronizer group several upserts into one transaction.
    """

    def __init__(self, session_factory: Optional[Callable] = None):
        """Initialize the store."""
        self._session_factory = session_factory or database.get_async_session
        self.logger = logger.bind(service="cache_store")

    @asynccontextmanager
    async def _session(
        self,
        operation: str,
        db: Optional[AsyncSession] = None,
        **context
    ) -> AsyncGenerator[AsyncSession, None]:
        try:
            if db is not None:
                yield db
            else:
                async with self._session_factory() as session:
                    yield session
        except SQLAlchemyError as e:
            self.logger.error("Cache store operation failed", operation=operation, error=str(e), **context)
            raise StorageFaultError(
                f"Failed to {operation}: {e}",
                {"operation": operation, **context}
            ) from e

    @staticmethod
    def _insert(db: AsyncSession, model):
        dialect = db.bind.dialect.name
        insert = _INSERTS.get(dialect)
        if insert is None:
            raise StorageFaultError(f"Unsupported database dialect: {dialect}")
        return insert(model)

    # === GAME METHODS ===

    async def upsert_game(self, record: GameRecord, db: Optional[AsyncSession] = None) -> None:
        """Insert a game, or rewrite it with identical content if it exists."""
        async with self._session("upsert game", db, game_id=record.game_id) as session:
            values = asdict(record)
            stmt = self._insert(session, Game).values(**values)
            stmt = stmt.on_conflict_do_update(
                index_elements=["game_id"],
                set_={key: stmt.excluded[key] for key in values if key != "game_id"},
            )
            await session.execute(stmt)

    async def upsert_participant(self, record: ParticipantRecord, db: Optional[AsyncSession] = None) -> None:
        """Insert a participant row keyed by (game_id, player_address)."""
        async with self._session(
            "upsert participant", db,
            game_id=record.game_id, player=record.player_address
        ) as session:
            values = asdict(record)
            stmt = self._insert(session, GameParticipant).values(**values)
            stmt = stmt.on_conflict_do_update(
                index_elements=["game_id", "player_address"],
                set_={
                    key: stmt.excluded[key]
                    for key in values if key not in ("game_id", "player_address")
                },
            )
            await session.execute(stmt)

    async def get_game(self, game_id: int) -> Optional[Game]:
        """Get a game with its participants ordered by position."""
        async with self._session("get game", game_id=game_id) as session:
            result = await session.execute(
                select(Game)
                .options(selectinload(Game.participants))
                .where(Game.game_id == game_id)
            )
            return result.scalar_one_or_none()

    async def game_exists(self, game_id: int, db: Optional[AsyncSession] = None) -> bool:
        async with self._session("check game", db, game_id=game_id) as session:
            result = await session.execute(
                select(Game.game_id).where(Game.game_id == game_id)
            )
            return result.first() is not None

    async def list_recent_games(self, limit: int = 50, offset: int = 0) -> List[Game]:
        """Newest games first."""
        async with self._session("list games") as session:
            result = await session.execute(
                select(Game)
                .options(selectinload(Game.participants))
                .order_by(Game.game_id.desc())
                .limit(limit)
                .offset(offset)
            )
            return list(result.scalars().all())

    async def get_latest_direction(self) -> Optional[ScoreDirection]:
        """Ranking direction recorded on the newest cached game."""
        async with self._session("read latest direction") as session:
            result = await session.execute(
                select(Game.is_descending_order).order_by(Game.game_id.desc()).limit(1)
            )
            flag = result.scalar_one_or_none()
            return None if flag is None else ScoreDirection.from_flag(flag)

    # === PLAYER METHODS ===

    async def upsert_player_stats(self, aggregate: PlayerAggregate, db: Optional[AsyncSession] = None) -> None:
        """Write a fully folded aggregate. Last write wins."""
        async with self._session("upsert player stats", db, player=aggregate.address) as session:
            values = {
                "player_address": aggregate.address,
                "best_score": aggregate.best_score,
                "total_wins": aggregate.total_wins,
                "total_games": aggregate.total_games,
                "current_equipped_hat": aggregate.equipped_hat,
                "has_played": aggregate.has_played,
                "last_updated": utcnow(),
            }
            stmt = self._insert(session, PlayerStats).values(**values)
            stmt = stmt.on_conflict_do_update(
                index_elements=["player_address"],
                set_={key: stmt.excluded[key] for key in values if key != "player_address"},
            )
            await session.execute(stmt)

    async def get_player_stats(self, address: str) -> Optional[PlayerStats]:
        async with self._session("get player stats", player=address) as session:
            return await session.get(PlayerStats, address)

    async def get_players_stats(self, addresses: Sequence[str]) -> Dict[str, PlayerStats]:
        """Stats rows for several players keyed by address; missing players are absent."""
        if not addresses:
            return {}
        async with self._session("get players stats") as session:
            result = await session.execute(
                select(PlayerStats).where(PlayerStats.player_address.in_(list(addresses)))
            )
            return {row.player_address: row for row in result.scalars().all()}

    async def get_player_history(
        self,
        address: str,
        db: Optional[AsyncSession] = None,
        oldest_first: bool = False,
    ) -> List[PlayerGameEntry]:
        """Every game the player took part in, newest first unless oldest_first."""
        order = Game.game_id.asc() if oldest_first else Game.game_id.desc()
        async with self._session("get player history", db, player=address) as session:
            result = await session.execute(
                select(GameParticipant, Game)
                .join(Game, GameParticipant.game_id == Game.game_id)
                .where(GameParticipant.player_address == address)
                .order_by(order)
            )
            return [
                PlayerGameEntry(
                    game_id=game.game_id,
                    score=participant.score,
                    position=participant.position,
                    equipped_hat_id=participant.equipped_hat_id,
                    hat_type=participant.hat_type,
                    won=game.winner_address == address,
                    is_descending_order=game.is_descending_order,
                    created_at=game.created_at,
                )
                for participant, game in result.all()
            ]

    async def rebuild_player_stats(
        self,
        address: str,
        equipped_hat: Optional[int] = None,
        db: Optional[AsyncSession] = None,
    ) -> Optional[PlayerAggregate]:
        """
        Recompute a player's aggregate from their stored participations.

        Each game is folded under the direction it was recorded with, so
        the result only depends on stored rows.
        """
        history = await self.get_player_history(address, db=db, oldest_first=True)
        aggregate = replay_player_stats(
            address,
            (
                (
                    ParticipationEntry(
                        score=entry.score,
                        is_winner=entry.won,
                        equipped_hat=entry.equipped_hat_id,
                    ),
                    ScoreDirection.from_flag(entry.is_descending_order),
                )
                for entry in history
            ),
        )
        if aggregate is not None and equipped_hat is not None:
            aggregate = replace(aggregate, equipped_hat=equipped_hat)
        return aggregate

    async def get_leaderboard(
        self,
        limit: int = 10,
        direction: ScoreDirection = ScoreDirection.DESCENDING,
    ) -> List[PlayerStats]:
        """Players who have played, by wins then best score under direction."""
        best_order = PlayerStats.best_score.desc() if direction.is_descending else PlayerStats.best_score.asc()
        async with self._session("get leaderboard") as session:
            result = await session.execute(
                select(PlayerStats)
                .where(PlayerStats.has_played.is_(True))
                .order_by(PlayerStats.total_wins.desc(), best_order, PlayerStats.player_address)
                .limit(limit)
            )
            return list(result.scalars().all())

    # === GAME UNIT ===

    async def write_game_unit(
        self,
        game: GameRecord,
        participants: Sequence[ParticipantRecord],
        equipped_hats: Optional[Dict[str, int]] = None,
    ) -> List[PlayerAggregate]:
        """
        Write a game, its participants and their refreshed aggregates atomically.

        Aggregates are rebuilt from stored history inside the same
        transaction, so writing the same game twice yields the same rows.

        Raises:
            StorageFaultError: if any statement fails; nothing is committed
        """
        equipped_hats = equipped_hats or {}
        async with self._session("write game unit", game_id=game.game_id) as db:
            await self.upsert_game(game, db=db)
            for participant in participants:
                await self.upsert_participant(participant, db=db)

            aggregates = []
            for participant in participants:
                aggregate = await self.rebuild_player_stats(
                    participant.player_address,
                    equipped_hat=equipped_hats.get(participant.player_address),
                    db=db,
                )
                await self.upsert_player_stats(aggregate, db=db)
                aggregates.append(aggregate)

        self.logger.debug("Game unit written", game_id=game.game_id, participants=len(participants))
        return aggregates

    # === SYNC METHODS ===

    async def ensure_checkpoint(self) -> None:
        """Create the checkpoint row with zero values if it does not exist."""
        async with self._session("ensure checkpoint") as session:
            stmt = self._insert(session, SyncState).values(
                id=CHECKPOINT_ID,
                last_synced_block=0,
                last_synced_game_id=0,
            )
            await session.execute(stmt.on_conflict_do_nothing(index_elements=["id"]))

    async def get_checkpoint(self) -> SyncState:
        """Stored checkpoint, or an unsaved zero checkpoint when none exists yet."""
        async with self._session("get checkpoint") as session:
            state = await session.get(SyncState, CHECKPOINT_ID)
            if state is None:
                return SyncState(id=CHECKPOINT_ID, last_synced_block=0, last_synced_game_id=0)
            return state

    async def advance_checkpoint(self, block_number: int, game_id: Optional[int] = None) -> SyncState:
        """
        Move the checkpoint forward. Neither field ever moves backwards.

        Callers must only advance after the records covered by the new
        position are committed.
        """
        async with self._session("advance checkpoint", block_number=block_number, game_id=game_id) as session:
            state = await session.get(SyncState, CHECKPOINT_ID)
            if state is None:
                state = SyncState(id=CHECKPOINT_ID, last_synced_block=0, last_synced_game_id=0)
                session.add(state)

            state.last_synced_block = max(state.last_synced_block or 0, block_number)
            state.last_synced_game_id = max(state.last_synced_game_id or 0, game_id or 0)
            state.last_sync_time = utcnow()
            return state

    # === STATS METHODS ===

    async def get_record_counts(self) -> Dict[str, int]:
        async with self._session("count records") as session:
            games = await session.scalar(select(func.count()).select_from(Game))
            participants = await session.scalar(select(func.count()).select_from(GameParticipant))
            players = await session.scalar(
                select(func.count()).select_from(PlayerStats).where(PlayerStats.has_played.is_(True))
            )
            return {
                "games": games or 0,
                "participants": participants or 0,
                "players": players or 0,
            }

    async def get_top_scores_since(
        self,
        since: datetime,
        limit: int,
        direction: ScoreDirection,
    ) -> List[TopScoreEntry]:
        """Individual scores from games cached since a point in time, best first."""
        score_order = GameParticipant.score.desc() if direction.is_descending else GameParticipant.score.asc()
        async with self._session("get top scores") as session:
            result = await session.execute(
                select(GameParticipant, Game)
                .join(Game, GameParticipant.game_id == Game.game_id)
                .where(Game.created_at >= since)
                .order_by(score_order, Game.game_id.asc())
                .limit(limit)
            )
            return [
                TopScoreEntry(
                    game_id=game.game_id,
                    player_address=participant.player_address,
                    score=participant.score,
                    equipped_hat_id=participant.equipped_hat_id,
                    hat_type=participant.hat_type,
                    block_number=game.block_number,
                    transaction_hash=game.transaction_hash,
                    created_at=game.created_at,
                )
                for participant, game in result.all()
            ]

    async def get_top_players_since(
        self,
        since: datetime,
        limit: int,
        direction: ScoreDirection,
    ) -> List[TopPlayerEntry]:
        """Best score per player over games cached since a point in time."""
        best = func.max(GameParticipant.score) if direction.is_descending else func.min(GameParticipant.score)
        best_order = best.desc() if direction.is_descending else best.asc()
        async with self._session("get top players") as session:
            result = await session.execute(
                select(
                    GameParticipant.player_address,
                    best.label("best_score"),
                    func.count(GameParticipant.id).label("games_played"),
                    func.max(Game.created_at).label("last_game_time"),
                )
                .join(Game, GameParticipant.game_id == Game.game_id)
                .where(Game.created_at >= since)
                .group_by(GameParticipant.player_address)
                .order_by(best_order, GameParticipant.player_address)
                .limit(limit)
            )
            return [
                TopPlayerEntry(
                    player_address=row.player_address,
                    best_score=row.best_score,
                    games_played=row.games_played,
                    last_game_time=row.last_game_time,
                )
                for row in result.all()
            ]

    async def count_games_since(self, since: datetime) -> int:
        async with self._session("count games") as session:
            count = await session.scalar(
                select(func.count()).select_from(Game).where(Game.created_at >= since)
            )
            return count or 0

    async def count_active_players_since(self, since: datetime) -> int:
        async with self._session("count active players") as session:
            count = await session.scalar(
                select(func.count(distinct(GameParticipant.player_address)))
                .join(Game, GameParticipant.game_id == Game.game_id)
                .where(Game.created_at >= since)
            )
            return count or 0
