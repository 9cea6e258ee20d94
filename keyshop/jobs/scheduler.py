# keyshop/jobs/scheduler.py
import logging
from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from ..config import Config
from ..services.delivery_service import DeliveryService
from ..services.stock_sync_service import StockSyncService
from ..services.wallet_service import WalletService

logger = logging.getLogger(__name__)

class ShopScheduler:
    """Runs the periodic maintenance jobs against the shared database"""

    def __init__(self, db, wallet_service=None, delivery_service=None, stock_sync=None):
        self.wallet_service = wallet_service or WalletService(db)
        self.delivery_service = delivery_service or DeliveryService(db)
        self.stock_sync = stock_sync or StockSyncService(db)

        self.scheduler = AsyncIOScheduler(
            jobstores={'default': MemoryJobStore()},
            executors={'default': AsyncIOExecutor()},
            job_defaults={
                'coalesce': True,
                'max_instances': 1,
                'misfire_grace_time': 60
            },
            timezone='UTC'
        )

    def setup_jobs(self):
        self.scheduler.add_job(
            self.expire_deposits,
            trigger=IntervalTrigger(minutes=Config.SWEEP_INTERVAL_MINUTES),
            id="expire_deposits",
            name="Expire Deposit Requests",
            replace_existing=True,
        )

        self.scheduler.add_job(
            self.cleanup_deliveries,
            trigger=IntervalTrigger(minutes=Config.SWEEP_INTERVAL_MINUTES),
            id="cleanup_deliveries",
            name="Delete Expired Deliveries",
            replace_existing=True,
        )

        self.scheduler.add_job(
            self.sync_stock,
            trigger=IntervalTrigger(minutes=Config.STOCK_SYNC_INTERVAL_MINUTES),
            id="sync_stock",
            name="Sync Product Stock",
            replace_existing=True,
        )

    # A failing run is logged and the next interval tries again
    async def expire_deposits(self):
        try:
            return await self.wallet_service.expire_deposit_requests()
        except Exception as e:
            logger.error(f"Deposit expiry sweep failed: {e}", exc_info=True)

    async def cleanup_deliveries(self):
        try:
            return await self.delivery_service.cleanup_expired_deliveries()
        except Exception as e:
            logger.error(f"Delivery cleanup sweep failed: {e}", exc_info=True)

    async def sync_stock(self):
        try:
            return await self.stock_sync.sync_all()
        except Exception as e:
            logger.error(f"Stock sync failed: {e}", exc_info=True)

    def start(self):
        self.setup_jobs()
        self.scheduler.start()
        logger.info("Scheduler started: deposit expiry, delivery cleanup, stock sync")

    def stop(self):
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
