"""
Command-line interface for the game cache.
"""

import asyncio
from contextlib import asynccontextmanager

import typer
from rich.console import Console
from rich.table import Table

from pinkhat_cache.core.database import DatabaseManager, close_database, init_database
from pinkhat_cache.core.exceptions import NotFoundError, PinkhatCacheException
from pinkhat_cache.core.logging import setup_logging
from pinkhat_cache.schemas import TopScoresMode
from pinkhat_cache.services.cache_store import CacheStore
from pinkhat_cache.services.chain_client import close_chain_client, get_chain_client
from pinkhat_cache.services.metadata_resolver import HatMetadataResolver
from pinkhat_cache.services.query_service import QueryService

console = Console()
app = typer.Typer(help="Pinkhat game cache commands")


@asynccontextmanager
async def _query_service():
    setup_logging()
    await init_database()
    try:
        event_source = get_chain_client()
        yield QueryService(CacheStore(), event_source, HatMetadataResolver(event_source))
    finally:
        await close_chain_client()
        await close_database()


def _run(coro) -> None:
    try:
        asyncio.run(coro)
    except NotFoundError as e:
        console.print(f"[yellow]{e.message}[/yellow]")
        raise typer.Exit(code=1)
    except PinkhatCacheException as e:
        console.print(f"[red]{e.code}: {e.message}[/red]")
        raise typer.Exit(code=1)


@app.command("init-db")
def init_db():
    """Create the cache tables and the sync checkpoint."""
    async def _init():
        setup_logging()
        await init_database()
        await DatabaseManager.create_tables()
        await CacheStore().ensure_checkpoint()
        await close_database()
        console.print("[green]Database initialized[/green]")

    _run(_init())


@app.command()
def run():
    """Run the synchronizer until interrupted."""
    from pinkhat_cache.indexer.main import main

    _run(main())


@app.command()
def status():
    """Show checkpoint position and cached record counts."""
    async def _status():
        setup_logging()
        await init_database()
        try:
            store = CacheStore()
            checkpoint = await store.get_checkpoint()
            counts = await store.get_record_counts()
        finally:
            await close_database()

        table = Table(title="Sync status")
        table.add_column("Field", style="cyan")
        table.add_column("Value", style="green")
        table.add_row("Status", "synced" if counts["games"] else "empty")
        table.add_row("Last synced block", str(checkpoint.last_synced_block))
        table.add_row("Last synced game", str(checkpoint.last_synced_game_id))
        table.add_row("Last sync time", str(checkpoint.last_sync_time or "-"))
        for name, count in counts.items():
            table.add_row(f"{name.capitalize()} cached", str(count))
        console.print(table)

    _run(_status())


@app.command()
def game(game_id: int):
    """Show a game and its ranked players."""
    async def _game():
        async with _query_service() as service:
            result = await service.get_game(game_id)

        table = Table(title=f"Game #{result.game_id} ({result.scoring_mode}, {result.provenance.value})")
        table.add_column("Position", justify="right")
        table.add_column("Player", style="cyan")
        table.add_column("Score", justify="right", style="green")
        table.add_column("Hat")
        for player in result.players:
            winner = " *" if player.address == result.winner else ""
            table.add_row(
                str(player.position),
                player.address + winner,
                str(player.score),
                player.hat_type or ("-" if not player.equipped_hat else f"#{player.equipped_hat}"),
            )
        console.print(table)

    _run(_game())


@app.command()
def player(address: str):
    """Show a player's stats and recent games."""
    async def _player():
        async with _query_service() as service:
            result = await service.get_player_stats(address)

        console.print(f"[bold]{result.address}[/bold] ({result.provenance.value})")
        console.print(
            f"Best score: {result.best_score}  Wins: {result.total_wins}  "
            f"Games: {result.total_games_played}  Hat: {result.equipped_hat_type or result.equipped_hat}"
        )

        table = Table(title="History")
        table.add_column("Game", justify="right")
        table.add_column("Score", justify="right", style="green")
        table.add_column("Position", justify="right")
        table.add_column("Won")
        for entry in result.history[:20]:
            table.add_row(str(entry.game_id), str(entry.score), str(entry.position), "yes" if entry.won else "")
        console.print(table)

    _run(_player())


@app.command()
def leaderboard(limit: int = typer.Option(10, "--limit", "-n", help="Number of players")):
    """Show the all-time leaderboard."""
    async def _leaderboard():
        async with _query_service() as service:
            result = await service.get_leaderboard(limit=limit)

        table = Table(title=f"Leaderboard ({result.scoring_mode}, {result.provenance.value})")
        table.add_column("Rank", justify="right")
        table.add_column("Player", style="cyan")
        table.add_column("Wins", justify="right", style="green")
        table.add_column("Best", justify="right")
        table.add_column("Games", justify="right")
        for entry in result.players:
            table.add_row(
                str(entry.rank), entry.address, str(entry.total_wins),
                str(entry.best_score), str(entry.total_games),
            )
        console.print(table)

    _run(_leaderboard())


@app.command("top-scores")
def top_scores(
    limit: int = typer.Option(10, "--limit", "-n"),
    hours: int = typer.Option(24, "--hours"),
    mode: TopScoresMode = typer.Option(TopScoresMode.SCORES, "--mode"),
):
    """Show the best scores of the last hours."""
    async def _top_scores():
        async with _query_service() as service:
            result = await service.get_top_scores(limit=limit, hours=hours, mode=mode)

        table = Table(
            title=f"Top {mode.value}, last {hours}h "
                  f"({result.games_in_window} games, {result.active_players} players)"
        )
        table.add_column("Rank", justify="right")
        table.add_column("Player", style="cyan")
        table.add_column("Score", justify="right", style="green")
        if mode is TopScoresMode.SCORES:
            table.add_column("Game", justify="right")
            for entry in result.scores:
                table.add_row(str(entry.rank), entry.address, str(entry.score), str(entry.game_id))
        else:
            table.add_column("Games", justify="right")
            for entry in result.players:
                table.add_row(str(entry.rank), entry.address, str(entry.best_score), str(entry.games_played))
        console.print(table)

    _run(_top_scores())


if __name__ == "__main__":
    app()
