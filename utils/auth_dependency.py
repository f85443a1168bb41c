from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from models import Actor, ActorRole
from utils.auth import verify_token

security = HTTPBearer()

async def get_current_actor(
    credentials: HTTPAuthorizationCredentials = Depends(security)
) -> Actor:
    actor = verify_token(credentials.credentials)
    if actor is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return actor

async def get_current_admin(current_actor: Actor = Depends(get_current_actor)) -> Actor:
    if current_actor.role != ActorRole.ADMIN:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required"
        )
    return current_actor

async def get_current_driver(current_actor: Actor = Depends(get_current_actor)) -> Actor:
    if current_actor.role != ActorRole.DRIVER:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Driver access required"
        )
    return current_actor

async def get_current_admin_or_customer(current_actor: Actor = Depends(get_current_actor)) -> Actor:
    if current_actor.role not in [ActorRole.ADMIN, ActorRole.CUSTOMER]:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin or Customer access required"
        )
    return current_actor
