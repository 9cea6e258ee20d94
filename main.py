# main.py
import asyncio
import logging
from keyshop.app import ShopApp
from keyshop.config import setup_logging

async def main():
    # Setup logging
    setup_logging()
    logger = logging.getLogger(__name__)

    shop = ShopApp()
    try:
        logger.info("Starting shop API...")
        await shop.start()
        await asyncio.Event().wait()
    except Exception as e:
        logger.error(f"Error starting shop API: {e}", exc_info=True)
        raise
    finally:
        await shop.stop()

if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
