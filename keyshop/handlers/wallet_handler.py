# keyshop/handlers/wallet_handler.py
from aiohttp import web

from ..exceptions import ValidationError
from ..models.schemas import DepositCreateRequest
from ..models.wallet import TransactionType
from .base_handler import BaseHandler

class WalletHandler(BaseHandler):
    """Wallet balance, history and deposit requests"""

    def setup_routes(self, app: web.Application):
        app.router.add_get("/api/wallet", self.wallet_info)
        app.router.add_get("/api/wallet/transactions", self.transactions)
        app.router.add_post("/api/wallet/deposit", self.create_deposit)
        app.router.add_get("/api/wallet/deposit/{deposit_id}", self.deposit_status)
        app.router.add_get("/api/wallet/deposits", self.deposit_history)

    async def wallet_info(self, request: web.Request):
        user = self.current_user(request)
        return self.respond(await self.services.wallets.get_wallet_info(user.id))

    async def transactions(self, request: web.Request):
        user = self.current_user(request)

        tx_type = request.query.get("type")
        if tx_type:
            try:
                tx_type = TransactionType(tx_type)
            except ValueError:
                raise ValidationError(f"Unknown transaction type {tx_type}")

        result = await self.services.wallets.get_transactions(
            user.id,
            tx_type=tx_type or None,
            start=self.datetime_query(request, "start"),
            end=self.datetime_query(request, "end"),
            page=self.int_query(request, "page", 1, minimum=1),
            limit=self.int_query(request, "limit", 20, minimum=1, maximum=100),
        )
        return self.respond(result)

    async def create_deposit(self, request: web.Request):
        user = self.current_user(request)
        body = await self.read_model(request, DepositCreateRequest)
        result = await self.services.wallets.create_deposit_request(
            user.id, body.amount, body.payment_method
        )
        return self.respond(result, status=201)

    async def deposit_status(self, request: web.Request):
        user = self.current_user(request)
        deposit = await self.services.wallets.check_deposit_status(
            user.id, self.uuid_param(request, "deposit_id")
        )
        return self.respond(deposit)

    async def deposit_history(self, request: web.Request):
        user = self.current_user(request)
        deposits = await self.services.wallets.get_deposit_history(
            user.id,
            limit=self.int_query(request, "limit", 20, minimum=1, maximum=100),
            offset=self.int_query(request, "offset", 0),
        )
        return self.respond(deposits)
