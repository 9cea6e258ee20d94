# keyshop/app.py
import logging
from typing import Optional

from aiohttp import web
from pydantic import ValidationError as PydanticValidationError

from .config import Config
from .database.database import Database
from .exceptions import ShopError, Unauthorized
from .handlers import (
    AdminHandler,
    PaymentVerificationHandler,
    UserHandler,
    VoucherHandler,
    WalletHandler,
)
from .jobs.scheduler import ShopScheduler
from .services.cart_service import CartService
from .services.delivery_service import DeliveryService
from .services.fulfillment_service import FulfillmentService
from .services.inventory_service import InventoryService
from .services.notification_service import AdminNotifier
from .services.order_service import OrderService
from .services.payment_service import PaymentService
from .services.permission_service import PermissionService
from .services.product_service import ProductService
from .services.stock_sync_service import StockSyncService
from .services.voucher_service import VoucherService
from .services.wallet_service import WalletService
from .utils.formatters import json_dumps
from .utils.security import verify_access_token

logger = logging.getLogger(__name__)

PUBLIC_PATHS = {"/healthz"}
# Webhooks authenticate with their own API key
PUBLIC_PREFIXES = ("/api/webhooks/",)

class Services:
    """Every service wired against one database"""

    def __init__(self, db):
        self.products = ProductService(db)
        self.stock_sync = StockSyncService(db)
        self.carts = CartService(db, self.products)
        self.vouchers = VoucherService(db)
        self.wallets = WalletService(db)
        self.deliveries = DeliveryService(db)
        self.inventory = InventoryService(db, self.products, self.stock_sync)
        self.fulfillment = FulfillmentService(db, self.inventory)
        self.notifier = AdminNotifier()
        self.payments = PaymentService(db, self.fulfillment, self.wallets, self.notifier)
        self.orders = OrderService(
            db,
            cart_service=self.carts,
            product_service=self.products,
            voucher_service=self.vouchers,
            wallet_service=self.wallets,
            inventory_service=self.inventory,
            fulfillment_service=self.fulfillment,
            payment_service=self.payments,
        )
        self.permissions = PermissionService(db)

class ShopApp:
    def __init__(self, db: Optional[Database] = None, services=None,
                 scheduler: Optional[ShopScheduler] = None, webhook_api_key: Optional[str] = None):
        self.db = db or Database()
        self.services = services or Services(self.db)
        self.scheduler = scheduler
        self.runner: Optional[web.AppRunner] = None

        self.app = web.Application(
            middlewares=[
                self._error_middleware,
                self._auth_middleware,
            ]
        )
        self.setup_routes(webhook_api_key)

    def setup_routes(self, webhook_api_key: Optional[str] = None):
        self.app.router.add_get("/healthz", self.health)

        UserHandler(self.services).setup_routes(self.app)
        WalletHandler(self.services).setup_routes(self.app)
        VoucherHandler(self.services).setup_routes(self.app)
        AdminHandler(self.services).setup_routes(self.app)
        PaymentVerificationHandler(self.services, api_key=webhook_api_key).setup_routes(self.app)

    @web.middleware
    async def _error_middleware(self, request: web.Request, handler):
        try:
            return await handler(request)
        except web.HTTPException:
            raise
        except ShopError as e:
            if e.status >= 500:
                logger.error(f"{request.method} {request.path} failed: {e.message}")
            return web.json_response(e.to_dict(), status=e.status, dumps=json_dumps)
        except PydanticValidationError as e:
            return web.json_response(
                {
                    "success": False,
                    "error": "validation_error",
                    "message": "Invalid request body",
                    "details": e.errors(include_url=False, include_context=False),
                },
                status=400,
                dumps=json_dumps,
            )
        except Exception as e:
            logger.exception(f"Unhandled error on {request.method} {request.path}: {e}")
            return web.json_response(
                {"success": False, "error": "unknown_error", "message": "Internal server error"},
                status=500,
            )

    @web.middleware
    async def _auth_middleware(self, request: web.Request, handler):
        if request.path in PUBLIC_PATHS or request.path.startswith(PUBLIC_PREFIXES):
            return await handler(request)

        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            raise Unauthorized("Missing bearer token")

        user_id, role = verify_access_token(auth_header[7:].strip())
        request['user'] = await self.services.permissions.resolve_user(user_id, role)
        return await handler(request)

    async def health(self, request: web.Request):
        return web.json_response({"success": True, "status": "ok"})

    async def start(self, host: Optional[str] = None, port: Optional[int] = None):
        if self.runner is not None:
            return

        await self.db.connect()

        if self.scheduler is None:
            self.scheduler = ShopScheduler(
                self.db,
                wallet_service=self.services.wallets,
                delivery_service=self.services.deliveries,
                stock_sync=self.services.stock_sync,
            )
        self.scheduler.start()

        self.runner = web.AppRunner(self.app)
        await self.runner.setup()
        host = host or Config.HOST
        port = port or Config.PORT
        site = web.TCPSite(self.runner, host, port)
        await site.start()
        logger.info(f"Shop API listening on {host}:{port}")

    async def stop(self):
        if self.runner is not None:
            await self.runner.cleanup()
            self.runner = None
        if self.scheduler is not None:
            self.scheduler.stop()
        await self.db.close()
        logger.info("Shop API stopped")
