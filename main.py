"""
newsdash main entry
Boots the sync engine and keeps the monitoring resources polled
"""

import asyncio

from loguru import logger

from newsdash.resources.hooks import ResourceSnapshot
from newsdash.services.engine import SyncEngine
from newsdash.settings import global_settings


def log_snapshot(snap: ResourceSnapshot) -> None:
    if snap.error:
        logger.warning(f"{snap.key}: {snap.error_message(global_settings.locale)}")
    elif snap.value is not None and not snap.is_loading:
        logger.info(f"{snap.key} updated{' (stale)' if snap.is_stale else ''}")


async def main() -> None:
    """Main function"""
    logger.info("Starting newsdash...")

    engine = SyncEngine(global_settings)
    try:
        await engine.start()

        articles = engine.resources.articles(polling=True)
        engine.resources.watch_new_articles(
            articles, lambda count: logger.info(f"{count} new article(s) published")
        )

        resources = [
            engine.resources.health(),
            engine.resources.scraper_stats(),
            articles,
        ]
        for resource in resources:
            resource.watch(log_snapshot)
            resource.mount()

        logger.info("Loading initial data...")
        await asyncio.gather(*(r.load() for r in resources))
        await engine.resources.prefetch_static()

        logger.info("newsdash is running. Press Ctrl+C to stop.")
        while True:
            await asyncio.sleep(60)
            logger.debug(f"Status: {engine.get_health_status()}")

    except (KeyboardInterrupt, asyncio.CancelledError):
        logger.info("Received interrupt signal, shutting down...")
    finally:
        await engine.close()
        logger.info("newsdash stopped")


if __name__ == "__main__":
    asyncio.run(main())
