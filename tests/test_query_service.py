"""
Test cache-first reads, chain fallback and provenance tagging.
"""

import pytest

from pinkhat_cache.core.exceptions import (
    GameNotFoundError,
    InvalidAddressError,
    PlayerNotFoundError,
    SourceUnavailableError,
    StorageFaultError,
    ValidationError,
)
from pinkhat_cache.indexer.synchronizer import GameSynchronizer
from pinkhat_cache.schemas import Provenance, TopScoresMode
from pinkhat_cache.services.query_service import QueryService


ALICE = "0x" + "1" * 40
BOB = "0x" + "2" * 40
CAROL = "0x" + "3" * 40
DAVE = "0x" + "4" * 40


@pytest.fixture
def service(store, source):
    return QueryService(store, source, start_block=0)


async def sync_all(store, source):
    synchronizer = GameSynchronizer(source, store, None, retry_delay=0, max_retries=1, start_block=0)
    await synchronizer.catch_up()
    return synchronizer


def comparable(response):
    data = response.model_dump(exclude={"provenance", "timestamp", "created_at"})
    for entry in data.get("history", []):
        entry.pop("created_at", None)
    return data


@pytest.mark.asyncio
async def test_game_from_cache(service, store, source):
    source.add_game(1, [ALICE, BOB], [90, 40])
    await sync_all(store, source)

    game = await service.get_game(1)

    assert game.provenance is Provenance.CACHE
    assert game.winner == ALICE
    assert game.scoring_mode == "Higher scores better"
    assert [(p.address, p.position) for p in game.players] == [(ALICE, 1), (BOB, 2)]


@pytest.mark.asyncio
async def test_uncached_game_matches_what_gets_cached(service, store, source):
    source.hats = {BOB: 4}
    source.add_game(1, [ALICE, BOB, CAROL], [50, 80, 20])

    live = await service.get_game(1)
    await sync_all(store, source)
    cached = await service.get_game(1)

    assert live.provenance is Provenance.LIVE
    assert cached.provenance is Provenance.CACHE
    assert comparable(live) == comparable(cached)


@pytest.mark.asyncio
async def test_unknown_game_is_not_found(service):
    with pytest.raises(GameNotFoundError):
        await service.get_game(42)


@pytest.mark.asyncio
async def test_store_and_source_both_failing(service, store, source, monkeypatch):
    async def broken_get_game(game_id):
        raise StorageFaultError("database is locked")

    monkeypatch.setattr(store, "get_game", broken_get_game)
    source.available = False

    with pytest.raises(SourceUnavailableError):
        await service.get_game(1)


@pytest.mark.asyncio
async def test_store_failure_falls_back_to_chain(service, store, source, monkeypatch):
    source.add_game(1, [ALICE, BOB], [90, 40])

    async def broken_get_game(game_id):
        raise StorageFaultError("database is locked")

    monkeypatch.setattr(store, "get_game", broken_get_game)

    game = await service.get_game(1)

    assert game.provenance is Provenance.LIVE
    assert game.player_count == 2


@pytest.mark.asyncio
async def test_player_stats_cache_and_live_agree(service, store, source):
    source.add_game(1, [ALICE, BOB], [90, 40])
    source.add_game(2, [BOB, ALICE], [95, 70])

    live = await service.get_player_stats(ALICE.lower())
    await sync_all(store, source)
    cached = await service.get_player_stats(ALICE)

    assert live.provenance is Provenance.LIVE
    assert cached.provenance is Provenance.CACHE
    assert cached.best_score == 90
    assert cached.total_games_played == 2
    assert cached.total_wins == 1
    assert cached.games_played == [2, 1]
    assert comparable(live) == comparable(cached)


@pytest.mark.asyncio
async def test_unknown_player_is_not_found(service):
    with pytest.raises(PlayerNotFoundError):
        await service.get_player_stats(DAVE)


@pytest.mark.asyncio
async def test_invalid_address_is_rejected(service):
    with pytest.raises(InvalidAddressError):
        await service.get_player_stats("0x1234")


@pytest.mark.asyncio
async def test_leaderboard_from_cache(service, store, source):
    source.add_game(1, [ALICE, BOB], [90, 40])
    source.add_game(2, [CAROL, BOB], [60, 50])
    source.add_game(3, [ALICE, CAROL], [30, 20])
    await sync_all(store, source)

    board = await service.get_leaderboard(limit=2)

    assert board.provenance is Provenance.CACHE
    assert [(e.rank, e.address) for e in board.players] == [(1, ALICE), (2, CAROL)]


@pytest.mark.asyncio
async def test_leaderboard_falls_back_when_cache_is_empty(service, source):
    source.add_game(1, [ALICE, BOB], [90, 40])

    board = await service.get_leaderboard()

    assert board.provenance is Provenance.LIVE
    assert [e.address for e in board.players] == [ALICE, BOB]
    assert board.players[0].total_wins == 1


@pytest.mark.asyncio
async def test_live_and_cached_leaderboards_break_ties_alike(service, store, source):
    source.add_game(1, [CAROL, BOB], [90, 50])
    source.add_game(2, [CAROL, ALICE], [95, 50])

    live = await service.get_leaderboard()
    await sync_all(store, source)
    cached = await service.get_leaderboard()

    assert live.provenance is Provenance.LIVE
    assert cached.provenance is Provenance.CACHE
    assert [e.address for e in live.players] == [CAROL, ALICE, BOB]
    assert [e.address for e in cached.players] == [CAROL, ALICE, BOB]
    assert [(e.rank, e.best_score, e.total_wins, e.total_games) for e in live.players] == [
        (e.rank, e.best_score, e.total_wins, e.total_games) for e in cached.players
    ]


@pytest.mark.asyncio
async def test_leaderboard_limit_is_validated(service):
    with pytest.raises(ValidationError):
        await service.get_leaderboard(limit=0)


@pytest.mark.asyncio
async def test_custom_leaderboard_lists_unplayed_players_last(service, store, source):
    source.add_game(1, [ALICE, BOB], [90, 40])
    await sync_all(store, source)
    source.add_game(2, [CAROL, BOB], [95, 10])

    board = await service.get_custom_leaderboard([DAVE, BOB, CAROL, ALICE, BOB])

    assert board.provenance is Provenance.LIVE
    assert [e.address for e in board.players] == [CAROL, ALICE, BOB, DAVE]
    assert not board.players[-1].has_played


@pytest.mark.asyncio
async def test_sync_status(service, store, source):
    status = await service.get_sync_status()
    assert status.status == "empty"

    source.add_game(1, [ALICE, BOB], [90, 40])
    await sync_all(store, source)
    status = await service.get_sync_status()

    assert status.status == "synced"
    assert status.last_synced_block == source.head
    assert status.last_synced_game_id == 1
    assert status.record_counts == {"games": 1, "participants": 2, "players": 2}
    assert status.synchronizer is None


@pytest.mark.asyncio
async def test_top_scores(service, store, source):
    source.add_game(1, [ALICE, BOB], [90, 40])
    source.add_game(2, [BOB, CAROL], [95, 20])
    await sync_all(store, source)

    scores = await service.get_top_scores(limit=2, hours=24)
    players = await service.get_top_scores(limit=10, hours=24, mode="players")

    assert [(e.address, e.score) for e in scores.scores] == [(BOB, 95), (ALICE, 90)]
    assert [(e.address, e.best_score) for e in players.players] == [(BOB, 95), (ALICE, 90), (CAROL, 20)]
    assert players.mode is TopScoresMode.PLAYERS
    assert scores.games_in_window == 2
    assert scores.active_players == 3


@pytest.mark.asyncio
@pytest.mark.parametrize("kwargs", [
    {"limit": 101},
    {"hours": 169},
    {"hours": 0},
    {"mode": "weekly"},
])
async def test_top_scores_bounds(service, kwargs):
    with pytest.raises(ValidationError):
        await service.get_top_scores(**kwargs)


@pytest.mark.asyncio
async def test_scoring_mode(service, store, source):
    source.descending = False
    source.add_game(1, [ALICE, BOB], [10, 40])
    await sync_all(store, source)

    live = await service.get_scoring_mode()
    source.available = False
    cached = await service.get_scoring_mode()

    assert live.provenance is Provenance.LIVE
    assert cached.provenance is Provenance.CACHE
    assert live.scoring_mode == cached.scoring_mode == "Lower scores better"


@pytest.mark.asyncio
async def test_equipped_hat(service, store, source):
    source.hats = {ALICE: 3}
    source.add_game(1, [ALICE, BOB], [90, 40])
    await sync_all(store, source)

    live = await service.get_equipped_hat(ALICE)
    source.available = False
    cached = await service.get_equipped_hat(ALICE)

    assert (live.hat_id, live.provenance) == (3, Provenance.LIVE)
    assert (cached.hat_id, cached.provenance) == (3, Provenance.CACHE)
    with pytest.raises(SourceUnavailableError):
        await service.get_equipped_hat(DAVE)


@pytest.mark.asyncio
async def test_recent_games_newest_first(service, store, source):
    for game_id in range(1, 5):
        source.add_game(game_id, [ALICE, BOB], [game_id, 10])
    await sync_all(store, source)

    page = await service.list_recent_games(limit=2, offset=1)

    assert [g.game_id for g in page.games] == [3, 2]
    assert page.provenance is Provenance.CACHE
