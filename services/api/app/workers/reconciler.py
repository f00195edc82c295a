"""
Cleanup reconciler — periodic sweep for unfinished account deletions.

Every ``reconcile_interval_seconds``:
  1. Resume cleanup jobs left pending or failed (process crash, DB error).
  2. Open a job for any owner id still referenced by posts, comments or
     likes although the user row is gone, then run it.

Run with:  python -m app.workers.reconciler
"""
import asyncio
import logging

from app.config import settings
from app.core.lifecycle import AccountLifecycleManager
from app.database import AsyncSessionLocal, engine, init_db
from app.repository.sql import SqlFeedRepository
from app.telemetry import setup_tracing

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s — %(message)s",
)
logger = logging.getLogger(__name__)


async def sweep(manager: AccountLifecycleManager) -> int:
    count = await manager.reconcile()
    if count:
        logger.info("Reconciler ran %d cleanup job(s)", count)
    return count


# ─────────────────────────── Main Loop ───────────────────────────────────

async def main() -> None:
    setup_tracing()
    await init_db()

    manager = AccountLifecycleManager(
        SqlFeedRepository(AsyncSessionLocal),
        delete_post_comments=settings.delete_post_comments,
    )
    logger.info(
        "Cleanup reconciler started (interval=%ds)", settings.reconcile_interval_seconds
    )

    try:
        while True:
            try:
                await sweep(manager)
            except Exception as exc:
                logger.error("Reconciliation sweep failed: %s", exc, exc_info=exc)
            await asyncio.sleep(settings.reconcile_interval_seconds)
    finally:
        await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
