import asyncio
import logging

from app.core.db import init_db, close_db
from app.core.config import REAPER_INTERVAL
from app.services.booking_service import expire_stale_holds

log = logging.getLogger(__name__)


async def run_hold_reaper(interval: int = REAPER_INTERVAL):
    """Expires lapsed booking holds every `interval` seconds. Each sweep is idempotent."""
    log.info(f"Hold reaper started (every {interval}s).")
    while True:
        try:
            await expire_stale_holds()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log.error(f"Hold reaper sweep failed: {e}")
        await asyncio.sleep(interval)


async def main():
    await init_db()
    try:
        await run_hold_reaper()
    finally:
        await close_db()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        log.info("Hold reaper stopped.")
