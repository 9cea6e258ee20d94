# keyshop/handlers/base_handler.py
import functools
import json
from datetime import datetime
from typing import Any, Optional, Type, TypeVar
from uuid import UUID

from aiohttp import web
from pydantic import BaseModel

from ..exceptions import ValidationError
from ..models.user import AuthUser
from ..utils.formatters import json_dumps

ModelT = TypeVar("ModelT", bound=BaseModel)

def require_permission(permission: str):
    """Guard a handler method with a named admin permission"""
    def decorator(func):
        @functools.wraps(func)
        async def wrapper(self, request: web.Request):
            self.services.permissions.authorize(self.current_user(request), permission)
            return await func(self, request)
        return wrapper
    return decorator

class BaseHandler:
    """Shared request/response helpers for the HTTP handlers"""

    def __init__(self, services):
        self.services = services

    @staticmethod
    def current_user(request: web.Request) -> AuthUser:
        return request['user']

    @staticmethod
    def respond(data: Any = None, status: int = 200, **extra) -> web.Response:
        payload = {"success": True}
        if data is not None:
            payload["data"] = data
        payload.update(extra)
        return web.json_response(payload, status=status, dumps=json_dumps)

    @staticmethod
    def respond_raw(payload: Any, status: int = 200) -> web.Response:
        return web.json_response(payload, status=status, dumps=json_dumps)

    @staticmethod
    async def read_json(request: web.Request) -> Any:
        if not request.can_read_body:
            return {}
        try:
            return await request.json()
        except json.JSONDecodeError:
            raise ValidationError("Invalid JSON body")

    async def read_model(self, request: web.Request, model: Type[ModelT]) -> ModelT:
        """Parse the body into a pydantic model; bad input surfaces as 400"""
        data = await self.read_json(request)
        if not isinstance(data, dict):
            raise ValidationError("JSON body must be an object")
        return model.model_validate(data)

    @staticmethod
    def uuid_param(request: web.Request, name: str) -> UUID:
        try:
            return UUID(request.match_info[name])
        except ValueError:
            raise ValidationError(f"Invalid {name}")

    @staticmethod
    def int_query(request: web.Request, name: str, default: int,
                  minimum: int = 0, maximum: Optional[int] = None) -> int:
        raw = request.query.get(name)
        if raw is None or raw == "":
            return default
        try:
            value = int(raw)
        except ValueError:
            raise ValidationError(f"{name} must be an integer")
        if value < minimum or (maximum is not None and value > maximum):
            raise ValidationError(f"{name} out of range")
        return value

    @staticmethod
    def bool_query(request: web.Request, name: str, default: bool) -> bool:
        raw = request.query.get(name)
        if raw is None:
            return default
        return raw.lower() in ("1", "true", "yes")

    @staticmethod
    def uuid_query(request: web.Request, name: str) -> Optional[UUID]:
        raw = request.query.get(name)
        if not raw:
            return None
        try:
            return UUID(raw)
        except ValueError:
            raise ValidationError(f"Invalid {name}")

    @staticmethod
    def datetime_query(request: web.Request, name: str) -> Optional[datetime]:
        raw = request.query.get(name)
        if not raw:
            return None
        try:
            return datetime.fromisoformat(raw)
        except ValueError:
            raise ValidationError(f"{name} must be an ISO 8601 timestamp")
