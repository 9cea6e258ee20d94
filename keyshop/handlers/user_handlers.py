# keyshop/handlers/user_handlers.py
from aiohttp import web

from ..models.schemas import CartItemRequest, CartQuantityRequest, CheckoutRequest
from .base_handler import BaseHandler

class UserHandler(BaseHandler):
    """Cart, checkout, orders and delivered resources of the calling user"""

    def setup_routes(self, app: web.Application):
        app.router.add_get("/api/cart", self.get_cart)
        app.router.add_post("/api/cart/items", self.add_cart_item)
        app.router.add_put("/api/cart/items/{item_id}", self.update_cart_item)
        app.router.add_delete("/api/cart/items/{item_id}", self.remove_cart_item)
        app.router.add_delete("/api/cart", self.clear_cart)

        app.router.add_post("/api/orders/checkout", self.checkout)
        app.router.add_get("/api/orders", self.list_orders)
        app.router.add_get("/api/orders/stats", self.order_stats)
        app.router.add_get("/api/orders/{order_id}", self.order_detail)

        app.router.add_get("/api/resources", self.resources)

    async def get_cart(self, request: web.Request):
        user = self.current_user(request)
        return self.respond(await self.services.carts.get_cart(user.id))

    async def add_cart_item(self, request: web.Request):
        user = self.current_user(request)
        body = await self.read_model(request, CartItemRequest)
        item = await self.services.carts.add_item(user.id, body.product_id, body.quantity)
        return self.respond(item, status=201)

    async def update_cart_item(self, request: web.Request):
        user = self.current_user(request)
        body = await self.read_model(request, CartQuantityRequest)
        item = await self.services.carts.update_item_quantity(
            user.id, self.uuid_param(request, "item_id"), body.quantity
        )
        return self.respond(item)

    async def remove_cart_item(self, request: web.Request):
        user = self.current_user(request)
        await self.services.carts.remove_item(user.id, self.uuid_param(request, "item_id"))
        return self.respond(message="Item removed")

    async def clear_cart(self, request: web.Request):
        user = self.current_user(request)
        removed = await self.services.carts.clear_cart(user.id)
        return self.respond({"removed": removed})

    async def checkout(self, request: web.Request):
        user = self.current_user(request)
        body = await self.read_model(request, CheckoutRequest)
        result = await self.services.orders.checkout(user.id, body)
        return self.respond(result, status=201)

    async def list_orders(self, request: web.Request):
        user = self.current_user(request)
        page = self.int_query(request, "page", 1, minimum=1)
        page_size = self.int_query(request, "pageSize", 20, minimum=1, maximum=100)
        return self.respond(await self.services.orders.get_user_orders(user.id, page, page_size))

    async def order_stats(self, request: web.Request):
        user = self.current_user(request)
        return self.respond(await self.services.orders.get_user_order_stats(user.id))

    async def order_detail(self, request: web.Request):
        user = self.current_user(request)
        order = await self.services.orders.get_order_detail(
            user.id, self.uuid_param(request, "order_id")
        )
        return self.respond(order)

    async def resources(self, request: web.Request):
        """Non-expired deliveries of the caller's orders"""
        user = self.current_user(request)
        return self.respond(await self.services.deliveries.get_user_deliveries(user.id))
