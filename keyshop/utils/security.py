# keyshop/utils/security.py
import hashlib
import hmac
import time
from typing import Optional, Tuple
from uuid import UUID
from ..config import Config
from ..exceptions import Unauthorized

def _sign(message: str) -> str:
    return hmac.new(
        Config.SECRET_KEY.encode(),
        message.encode(),
        hashlib.sha256
    ).hexdigest()

def generate_access_token(user_id: UUID, role: str = "user", ttl: Optional[int] = None) -> str:
    """Issue a signed bearer token: <sub>.<role>.<exp>.<signature>"""
    expires = int(time.time()) + (ttl if ttl is not None else Config.ACCESS_TOKEN_TTL)
    message = f"{user_id}.{role}.{expires}"
    return f"{message}.{_sign(message)}"

def verify_access_token(token: str) -> Tuple[UUID, str]:
    """Return (subject id, role) or raise Unauthorized"""
    try:
        message, signature = token.rsplit('.', 1)
        subject, role, expires = message.split('.')
        user_id = UUID(subject)
        expires_at = int(expires)
    except ValueError:
        raise Unauthorized("Invalid token")

    if not hmac.compare_digest(signature, _sign(message)):
        raise Unauthorized("Invalid token")

    if int(time.time()) > expires_at:
        raise Unauthorized("Token expired")

    return user_id, role

def verify_webhook_api_key(header: Optional[str], expected: str) -> bool:
    """Check ``Authorization: Apikey <key>`` in constant time"""
    if not header:
        return False
    parts = header.split(' ')
    if len(parts) != 2 or parts[0] != 'Apikey':
        return False
    return hmac.compare_digest(parts[1], expected)
