"""
Authentication utilities for WebSocket and token verification
"""
from typing import Optional
from models import Actor, ActorRole
from utils.security import decode_token

# Roles a token may carry; 'system' is reserved for in-process callers
TOKEN_ROLES = (ActorRole.ADMIN, ActorRole.DRIVER, ActorRole.CUSTOMER)

def actor_from_payload(payload: Optional[dict]) -> Optional[Actor]:
    """
    Build the caller identity from a token payload.

    The payload carries:
    - user_id: user database ID
    - role: admin, driver or customer
    """
    if not payload:
        return None
    user_id = payload.get("user_id")
    try:
        role = ActorRole(payload.get("role"))
    except ValueError:
        return None
    if role not in TOKEN_ROLES or isinstance(user_id, bool) or not isinstance(user_id, int):
        return None
    return Actor(role=role, user_id=user_id)

def verify_token(token: str) -> Optional[Actor]:
    """Verify a JWT and return the caller, or None if it is not acceptable"""
    if not token:
        return None
    return actor_from_payload(decode_token(token))
