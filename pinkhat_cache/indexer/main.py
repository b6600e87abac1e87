"""
Main entry point for the synchronizer process.
"""

import asyncio
import signal

import structlog

from pinkhat_cache.core.config import settings
from pinkhat_cache.core.database import DatabaseManager, close_database, init_database
from pinkhat_cache.core.exceptions import ConfigurationError
from pinkhat_cache.core.logging import setup_logging
from pinkhat_cache.services.cache_store import CacheStore
from pinkhat_cache.services.chain_client import close_chain_client, get_chain_client
from pinkhat_cache.services.metadata_resolver import HatMetadataResolver
from .synchronizer import GameSynchronizer


logger = structlog.get_logger(__name__)


class IndexerMain:
    """
    Synchronizer process coordinator.

    Owns the database, the chain client and the synchronizer. Catch-up
    failures abort startup; once live, the process runs until stopped.
    """

    def __init__(self):
        self.synchronizer = None
        self.running = False
        self.tasks = []

    async def initialize(self):
        """Initialize database and chain components."""
        logger.info("Initializing synchronizer service", environment=settings.environment)

        if not settings.chain_configured:
            raise ConfigurationError("GAME_MANAGER_ADDRESS must be set to run the synchronizer")

        await init_database()
        await DatabaseManager.create_tables()

        event_source = get_chain_client()
        store = CacheStore()
        await store.ensure_checkpoint()

        self.synchronizer = GameSynchronizer(
            event_source=event_source,
            store=store,
            resolver=HatMetadataResolver(event_source),
        )

        logger.info("Synchronizer service initialized")

    async def start(self):
        """Catch up, go live and wait until stopped."""
        self.running = True
        await self.synchronizer.start()

        self.tasks.append(asyncio.create_task(self._periodic_health_check()))
        logger.info("Synchronizer service started", status=self.synchronizer.get_status())

        await self.synchronizer.wait()

    async def stop(self):
        """Stop the synchronizer service."""
        if not self.running and not self.tasks:
            return
        logger.info("Stopping synchronizer service")

        self.running = False

        for task in self.tasks:
            if not task.done():
                task.cancel()
        if self.tasks:
            await asyncio.gather(*self.tasks, return_exceptions=True)
        self.tasks = []

        if self.synchronizer:
            await self.synchronizer.stop()

        logger.info("Synchronizer service stopped")

    async def _periodic_health_check(self):
        """Log synchronizer and database health at a fixed interval."""
        while self.running:
            try:
                await asyncio.sleep(settings.indexer_health_interval)

                if not self.running:
                    break

                status = self.synchronizer.get_status()
                database_ok = await DatabaseManager.health_check()
                logger.info("Synchronizer health check", database_ok=database_ok, **status)

                if status["checkpoint_frozen"]:
                    logger.warning("Checkpoint frozen while failed events are retried", pending=status["pending_retries"])

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Health check error", error=str(e))


async def main():
    """Run the synchronizer service."""
    setup_logging()

    indexer = IndexerMain()
    loop = asyncio.get_running_loop()

    def signal_handler(signum):
        logger.info("Received signal, shutting down", signal=signum)
        asyncio.create_task(indexer.stop())

    for signum in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(signum, signal_handler, signum)

    try:
        await indexer.initialize()
        await indexer.start()
    except Exception as e:
        logger.error("Synchronizer service failed", error=str(e), error_type=type(e).__name__)
        raise
    finally:
        await indexer.stop()
        await close_chain_client()
        await close_database()


if __name__ == "__main__":
    asyncio.run(main())
