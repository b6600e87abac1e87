"""
Test cache store persistence: idempotent upserts, atomic game units and the checkpoint.
"""

from datetime import timedelta

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from pinkhat_cache.core.database import get_async_session
from pinkhat_cache.core.exceptions import StorageFaultError
from pinkhat_cache.models import Game, GameParticipant, SyncState
from pinkhat_cache.models.base import utcnow
from pinkhat_cache.services.cache_store import CacheStore, GameRecord, ParticipantRecord
from pinkhat_cache.services.stats_calculator import ScoreDirection


ALICE = "0x" + "1" * 40
BOB = "0x" + "2" * 40
CAROL = "0x" + "3" * 40


def game_record(game_id, winner=ALICE, players=2, descending=True):
    return GameRecord(
        game_id=game_id,
        block_number=game_id * 10,
        transaction_hash="0x" + format(game_id, "064x"),
        winner_address=winner,
        player_count=players,
        is_descending_order=descending,
    )


def participant(game_id, address, score, position, hat=0, hat_type=None):
    return ParticipantRecord(
        game_id=game_id,
        player_address=address,
        score=score,
        position=position,
        equipped_hat_id=hat,
        hat_type=hat_type,
    )


async def count_rows(model):
    async with get_async_session() as session:
        return await session.scalar(select(func.count()).select_from(model))


@pytest.mark.asyncio
async def test_upsert_game_is_idempotent(store):
    await store.upsert_game(game_record(1))
    await store.upsert_game(game_record(1))

    assert await count_rows(Game) == 1
    assert await store.game_exists(1)
    assert not await store.game_exists(2)


@pytest.mark.asyncio
async def test_game_participants_ordered_by_position(store):
    await store.write_game_unit(
        game_record(1),
        [participant(1, BOB, 40, 2), participant(1, ALICE, 90, 1)],
    )

    game = await store.get_game(1)

    assert game.winner_address == ALICE
    assert [p.player_address for p in game.participants] == [ALICE, BOB]
    assert [p.position for p in game.participants] == [1, 2]
    assert await store.get_game(99) is None


@pytest.mark.asyncio
async def test_write_game_unit_builds_aggregates(store):
    await store.write_game_unit(
        game_record(1, winner=ALICE),
        [participant(1, ALICE, 90, 1, hat=3), participant(1, BOB, 40, 2)],
        {ALICE: 3, BOB: 0},
    )
    aggregates = await store.write_game_unit(
        game_record(2, winner=BOB),
        [participant(2, BOB, 95, 1), participant(2, ALICE, 70, 2, hat=3)],
        {ALICE: 3, BOB: 0},
    )

    by_address = {agg.address: agg for agg in aggregates}
    assert by_address[ALICE].best_score == 90
    assert by_address[ALICE].total_games == 2
    assert by_address[ALICE].total_wins == 1
    assert by_address[ALICE].equipped_hat == 3
    assert by_address[BOB].best_score == 95

    stats = await store.get_player_stats(BOB)
    assert stats.total_games == 2
    assert stats.total_wins == 1
    assert stats.has_played


@pytest.mark.asyncio
async def test_rewriting_a_game_unit_changes_nothing(store):
    game = game_record(1)
    participants = [participant(1, ALICE, 90, 1), participant(1, BOB, 40, 2)]

    first = await store.write_game_unit(game, participants)
    second = await store.write_game_unit(game, participants)

    assert first == second
    assert await count_rows(Game) == 1
    assert await count_rows(GameParticipant) == 2
    assert (await store.get_player_stats(ALICE)).total_games == 1


@pytest.mark.asyncio
async def test_failed_game_unit_rolls_back(store, monkeypatch):
    async def broken_upsert(aggregate, db=None):
        raise OperationalError("INSERT INTO player_stats", {}, Exception("disk I/O error"))

    monkeypatch.setattr(store, "upsert_player_stats", broken_upsert)

    with pytest.raises(StorageFaultError):
        await store.write_game_unit(game_record(1), [participant(1, ALICE, 90, 1)])

    assert not await store.game_exists(1)
    assert await count_rows(GameParticipant) == 0
    assert await store.get_player_stats(ALICE) is None


@pytest.mark.asyncio
async def test_checkpoint_never_moves_backwards(store):
    checkpoint = await store.get_checkpoint()
    assert checkpoint.last_synced_block == 0
    assert checkpoint.last_synced_game_id == 0

    await store.advance_checkpoint(500, 12)
    await store.advance_checkpoint(300, 4)
    await store.ensure_checkpoint()

    checkpoint = await store.get_checkpoint()
    assert checkpoint.last_synced_block == 500
    assert checkpoint.last_synced_game_id == 12


@pytest.mark.asyncio
async def test_reading_a_missing_checkpoint_writes_nothing(database):
    store = CacheStore()

    checkpoint = await store.get_checkpoint()

    assert checkpoint.last_synced_block == 0
    assert checkpoint.last_synced_game_id == 0
    assert checkpoint.last_sync_time is None
    assert await count_rows(SyncState) == 0


@pytest.mark.asyncio
async def test_player_history_newest_first(store):
    await store.write_game_unit(game_record(1, winner=ALICE), [participant(1, ALICE, 90, 1), participant(1, BOB, 40, 2)])
    await store.write_game_unit(game_record(2, winner=BOB), [participant(2, BOB, 80, 1), participant(2, ALICE, 10, 2)])

    history = await store.get_player_history(ALICE)

    assert [entry.game_id for entry in history] == [2, 1]
    assert [entry.won for entry in history] == [False, True]
    assert history[1].position == 1


@pytest.mark.asyncio
async def test_leaderboard_order(store):
    await store.write_game_unit(game_record(1, winner=ALICE), [participant(1, ALICE, 90, 1), participant(1, BOB, 40, 2)])
    await store.write_game_unit(game_record(2, winner=CAROL), [participant(2, CAROL, 60, 1), participant(2, BOB, 50, 2)])
    await store.write_game_unit(game_record(3, winner=ALICE), [participant(3, ALICE, 30, 1), participant(3, CAROL, 20, 2)])

    rows = await store.get_leaderboard(limit=10, direction=ScoreDirection.DESCENDING)

    assert [row.player_address for row in rows] == [ALICE, CAROL, BOB]
    assert await store.get_latest_direction() is ScoreDirection.DESCENDING


@pytest.mark.asyncio
async def test_windowed_queries(store):
    await store.write_game_unit(game_record(1, winner=ALICE), [participant(1, ALICE, 90, 1), participant(1, BOB, 40, 2)])
    await store.write_game_unit(game_record(2, winner=BOB), [participant(2, BOB, 95, 1), participant(2, ALICE, 10, 2)])
    since = utcnow() - timedelta(hours=1)

    scores = await store.get_top_scores_since(since, 3, ScoreDirection.DESCENDING)
    players = await store.get_top_players_since(since, 10, ScoreDirection.ASCENDING)

    assert [(s.player_address, s.score) for s in scores] == [(BOB, 95), (ALICE, 90), (BOB, 40)]
    assert [(p.player_address, p.best_score) for p in players] == [(ALICE, 10), (BOB, 40)]
    assert players[0].games_played == 2
    assert await store.count_games_since(since) == 2
    assert await store.count_active_players_since(since) == 2
    assert await store.count_games_since(utcnow() + timedelta(hours=1)) == 0


@pytest.mark.asyncio
async def test_record_counts(store):
    assert await store.get_record_counts() == {"games": 0, "participants": 0, "players": 0}

    await store.write_game_unit(game_record(1), [participant(1, ALICE, 90, 1), participant(1, BOB, 40, 2)])

    assert await store.get_record_counts() == {"games": 1, "participants": 2, "players": 2}
