# keyshop/models/user.py
from typing import FrozenSet
from uuid import UUID
from pydantic import BaseModel

class AuthUser(BaseModel):
    """Authenticated caller resolved from a bearer credential"""
    id: UUID
    role: str = "user"
    permissions: FrozenSet[str] = frozenset()

    @property
    def is_super(self) -> bool:
        return self.role == "super"

    @property
    def is_admin(self) -> bool:
        return self.role in ("admin", "super")
