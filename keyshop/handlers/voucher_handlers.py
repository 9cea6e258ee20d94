# keyshop/handlers/voucher_handlers.py
from aiohttp import web

from ..models.schemas import VoucherCreateRequest, VoucherPreviewRequest, VoucherUpdateRequest
from .base_handler import BaseHandler, require_permission

class VoucherHandler(BaseHandler):
    def setup_routes(self, app: web.Application):
        app.router.add_post("/api/vouchers/preview", self.preview)
        app.router.add_get("/api/admin/vouchers", self.list_vouchers)
        app.router.add_post("/api/admin/vouchers", self.create_voucher)
        app.router.add_put("/api/admin/vouchers/{voucher_id}", self.update_voucher)
        app.router.add_delete("/api/admin/vouchers/{voucher_id}", self.deactivate_voucher)

    async def preview(self, request: web.Request):
        body = await self.read_model(request, VoucherPreviewRequest)
        return self.respond(await self.services.vouchers.preview(body.code, body.amount))

    @require_permission("vouchers.view")
    async def list_vouchers(self, request: web.Request):
        active_only = self.bool_query(request, "active", False)
        return self.respond(await self.services.vouchers.list_vouchers(active_only))

    @require_permission("vouchers.create")
    async def create_voucher(self, request: web.Request):
        body = await self.read_model(request, VoucherCreateRequest)
        return self.respond(await self.services.vouchers.create_voucher(body), status=201)

    @require_permission("vouchers.edit")
    async def update_voucher(self, request: web.Request):
        body = await self.read_model(request, VoucherUpdateRequest)
        voucher = await self.services.vouchers.update_voucher(
            self.uuid_param(request, "voucher_id"),
            body.model_dump(exclude_unset=True)
        )
        return self.respond(voucher)

    @require_permission("vouchers.delete")
    async def deactivate_voucher(self, request: web.Request):
        voucher = await self.services.vouchers.deactivate_voucher(self.uuid_param(request, "voucher_id"))
        return self.respond(voucher)
