import asyncio
import signal
import logging

from config import settings_conf
from database import init_db, close as db_close
from order_updates import OrderUpdatesService

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

async def main():
    """Run the order updates worker pool and queue cleaner until signalled."""
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(signum, stop_event.set)

    logger.info("Initializing database...")
    pool = await init_db(settings_conf['db_url'])

    # This process exists to do the background work
    service = OrderUpdatesService(pool, {**settings_conf, 'do_background_work': True})
    try:
        service.start()
        await stop_event.wait()
        logger.info("Shutdown signal received. Cleaning up...")
    finally:
        await service.stop()
        await db_close()

if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
