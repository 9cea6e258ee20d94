# keyshop/services/permission_service.py
import logging
import time
from typing import Dict, FrozenSet, Optional, Tuple
from uuid import UUID

from ..config import Config
from ..exceptions import Forbidden, NotFound
from ..models.user import AuthUser

logger = logging.getLogger(__name__)

class PermissionCache:
    """Per-user permission sets kept for a fixed time"""

    def __init__(self, ttl: Optional[float] = None, clock=time.monotonic):
        self.ttl = ttl if ttl is not None else Config.PERMISSION_CACHE_TTL
        self._clock = clock
        self._entries: Dict[UUID, Tuple[float, FrozenSet[str]]] = {}

    def get(self, user_id: UUID) -> Optional[FrozenSet[str]]:
        entry = self._entries.get(user_id)
        if entry is None:
            return None
        stored_at, permissions = entry
        if self._clock() - stored_at >= self.ttl:
            del self._entries[user_id]
            return None
        return permissions

    def set(self, user_id: UUID, permissions: FrozenSet[str]):
        self._entries[user_id] = (self._clock(), frozenset(permissions))

    def invalidate(self, user_id: UUID):
        self._entries.pop(user_id, None)

    def clear(self):
        self._entries.clear()

class PermissionService:
    def __init__(self, db, cache: Optional[PermissionCache] = None):
        self.db = db
        self.cache = cache or PermissionCache()

    async def get_user_permissions(self, user_id: UUID) -> FrozenSet[str]:
        cached = self.cache.get(user_id)
        if cached is not None:
            return cached

        async with self.db.connection() as conn:
            rows = await conn.fetch("""
                SELECT DISTINCT p.name
                FROM users u
                JOIN admin_roles r ON r.id = u.admin_role_id
                JOIN role_permissions rp ON rp.role_id = r.id
                JOIN permissions p ON p.id = rp.permission_id
                WHERE u.id = $1 AND r.is_active = TRUE
            """, user_id)

        permissions = frozenset(row['name'] for row in rows)
        self.cache.set(user_id, permissions)
        return permissions

    async def resolve_user(self, user_id: UUID, role: str) -> AuthUser:
        """Attach permissions to a verified subject; only admins carry any"""
        permissions = frozenset()
        if role == "admin":
            permissions = await self.get_user_permissions(user_id)
        return AuthUser(id=user_id, role=role, permissions=permissions)

    def authorize(self, user: AuthUser, permission: str):
        """Raise Forbidden unless the user holds the permission; super holds all"""
        if user.is_super:
            return
        if not user.is_admin or permission not in user.permissions:
            logger.warning(f"User {user.id} denied {permission}")
            raise Forbidden(required_permission=permission)

    async def update_admin_role(self, user_id: UUID, admin_role_id: Optional[int]) -> dict:
        async with self.db.connection() as conn:
            user = await conn.fetchrow("""
                UPDATE users
                SET admin_role_id = $2, updated_at = NOW()
                WHERE id = $1
                RETURNING id, role, admin_role_id
            """, user_id, admin_role_id)

        if not user:
            raise NotFound(f"User {user_id} not found")

        self.cache.invalidate(user_id)
        logger.info(f"Admin role of user {user_id} set to {admin_role_id}")
        return dict(user)
