from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime
from models import Actor
from services.chat_service import ChatService, thread_id_for
from utils.auth_dependency import get_current_actor
from utils.dependencies import get_chat_service

router = APIRouter(prefix="/api/chat", tags=["Chat"])

class MessageCreate(BaseModel):
    text: str = Field(..., min_length=1, max_length=2000)

class MessageResponse(BaseModel):
    id: int
    thread_id: str
    from_user_id: int
    to_user_id: Optional[int]
    text: str
    read_at: Optional[datetime]
    created_at: datetime

    class Config:
        from_attributes = True

@router.get("/threads")
def list_threads(
    user_id: Optional[int] = None,
    current_actor: Actor = Depends(get_current_actor),
    service: ChatService = Depends(get_chat_service)
):
    """
    Support threads with the latest message of each:
    - Admin: every thread, or one user's thread with user_id
    - Others: their own thread
    """
    return service.list_threads(current_actor, user_id=user_id)

@router.get("/threads/me")
def my_thread(current_actor: Actor = Depends(get_current_actor)):
    return {"thread_id": thread_id_for(current_actor.user_id)}

@router.get("/threads/{thread_id}/messages", response_model=List[MessageResponse])
def list_messages(
    thread_id: str,
    since: Optional[datetime] = None,
    current_actor: Actor = Depends(get_current_actor),
    service: ChatService = Depends(get_chat_service)
):
    return service.list_messages(thread_id, current_actor, since=since)

@router.post("/threads/{thread_id}/messages", response_model=MessageResponse, status_code=201)
def send_message(
    thread_id: str,
    data: MessageCreate,
    current_actor: Actor = Depends(get_current_actor),
    service: ChatService = Depends(get_chat_service)
):
    return service.send_message(thread_id, current_actor, data.text)

@router.post("/threads/{thread_id}/read")
def mark_thread_read(
    thread_id: str,
    current_actor: Actor = Depends(get_current_actor),
    service: ChatService = Depends(get_chat_service)
):
    updated = service.mark_read(thread_id, current_actor)
    return {"thread_id": thread_id, "updated": updated}
