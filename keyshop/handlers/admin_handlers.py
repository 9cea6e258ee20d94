# keyshop/handlers/admin_handlers.py
from aiohttp import web

from ..models.schemas import (
    AdminRoleUpdateRequest,
    InventoryBulkRequest,
    InventoryCreateRequest,
    RefundRequest,
    WalletAdjustRequest,
)
from .base_handler import BaseHandler, require_permission

class AdminHandler(BaseHandler):
    """Inventory, refunds, fulfillment retries, wallet adjustments and admin roles"""

    def setup_routes(self, app: web.Application):
        # Fixed paths before the {product_id} catch-all
        app.router.add_get("/api/admin/inventory/stats", self.inventory_stats)
        app.router.add_get("/api/admin/inventory/expiring", self.expiring_inventory)
        app.router.add_post("/api/admin/inventory/sync-stock", self.sync_stock)
        app.router.add_post("/api/admin/inventory/bulk", self.bulk_add_inventory)
        app.router.add_post("/api/admin/inventory", self.add_inventory)
        app.router.add_delete("/api/admin/inventory/items/{item_id}", self.delete_inventory)
        app.router.add_get("/api/admin/inventory/{product_id}", self.list_inventory)

        app.router.add_post("/api/admin/orders/{order_id}/refund", self.refund_order)
        app.router.add_post("/api/admin/orders/{order_id}/fulfill", self.retry_fulfillment)
        app.router.add_get("/api/admin/orders/{order_id}/deliveries", self.order_deliveries)
        app.router.add_get("/api/admin/deliveries/expiring", self.expiring_deliveries)

        app.router.add_post("/api/admin/wallets/{user_id}/adjust", self.adjust_wallet)
        app.router.add_put("/api/admin/admins/{user_id}/role", self.update_admin_role)

    @require_permission("inventory.view")
    async def inventory_stats(self, request: web.Request):
        stats = await self.services.inventory.get_stats(self.uuid_query(request, "product_id"))
        return self.respond(stats)

    @require_permission("inventory.view")
    async def expiring_inventory(self, request: web.Request):
        days = self.int_query(request, "days", 0, minimum=0, maximum=365)
        return self.respond(await self.services.inventory.get_expiring(days or None))

    @require_permission("inventory.view")
    async def list_inventory(self, request: web.Request):
        items = await self.services.inventory.list_inventory(
            self.uuid_param(request, "product_id"),
            show_sold=self.bool_query(request, "show_sold", True),
            show_expired=self.bool_query(request, "show_expired", False),
            limit=self.int_query(request, "limit", 100, minimum=1, maximum=1000),
            offset=self.int_query(request, "offset", 0),
        )
        return self.respond(items)

    @require_permission("inventory.create")
    async def add_inventory(self, request: web.Request):
        body = await self.read_model(request, InventoryCreateRequest)
        item = await self.services.inventory.add_item(body)
        return self.respond(item, status=201)

    @require_permission("inventory.create")
    async def bulk_add_inventory(self, request: web.Request):
        body = await self.read_model(request, InventoryBulkRequest)
        result = await self.services.inventory.import_items(
            body.product_id, items=body.items, text=body.items_text
        )
        return self.respond(result, status=201)

    @require_permission("inventory.delete")
    async def delete_inventory(self, request: web.Request):
        item = await self.services.inventory.delete_item(self.uuid_param(request, "item_id"))
        return self.respond({"id": item['id']}, message="Inventory item deleted")

    @require_permission("inventory.edit")
    async def sync_stock(self, request: web.Request):
        product_id = self.uuid_query(request, "product_id")
        if product_id:
            return self.respond(await self.services.stock_sync.sync_product(product_id))
        return self.respond(await self.services.stock_sync.sync_all())

    @require_permission("orders.refund")
    async def refund_order(self, request: web.Request):
        body = await self.read_model(request, RefundRequest)
        result = await self.services.orders.refund_order(
            self.uuid_param(request, "order_id"),
            body.reason,
            admin_id=self.current_user(request).id
        )
        return self.respond(result)

    @require_permission("orders.edit")
    async def retry_fulfillment(self, request: web.Request):
        result = await self.services.orders.retry_fulfillment(self.uuid_param(request, "order_id"))
        return self.respond(result)

    @require_permission("orders.view")
    async def order_deliveries(self, request: web.Request):
        order_id = self.uuid_param(request, "order_id")
        status = await self.services.fulfillment.get_fulfillment_status(order_id)
        status["deliveries"] = await self.services.deliveries.get_order_deliveries(order_id)
        return self.respond(status)

    @require_permission("orders.view")
    async def expiring_deliveries(self, request: web.Request):
        days = self.int_query(request, "days", 3, minimum=1, maximum=365)
        return self.respond(await self.services.deliveries.get_expiring_deliveries(days))

    @require_permission("wallets.adjust")
    async def adjust_wallet(self, request: web.Request):
        body = await self.read_model(request, WalletAdjustRequest)
        result = await self.services.wallets.admin_adjust_wallet(
            self.uuid_param(request, "user_id"),
            body.amount,
            body.description,
            admin_id=self.current_user(request).id
        )
        return self.respond(result)

    @require_permission("admins.edit")
    async def update_admin_role(self, request: web.Request):
        body = await self.read_model(request, AdminRoleUpdateRequest)
        user = await self.services.permissions.update_admin_role(
            self.uuid_param(request, "user_id"), body.admin_role_id
        )
        return self.respond(user)
