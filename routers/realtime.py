"""
Realtime channel: one WebSocket per client, multiplexing order, driver and
chat topics through the RealtimeHub.

Client messages are JSON objects with a "type":
- join-order / leave-order {orderId}
- join-driver / leave-driver {driverId}
- chat:join / chat:leave {threadId}
- driver-location {lat, lng, heading?, speed?, orderId?}
- chat:message {threadId, text}
- chat:read {threadId}
- ping
"""
from fastapi import APIRouter, WebSocket, WebSocketDisconnect, Query
from starlette.concurrency import run_in_threadpool
from typing import Optional
import asyncio
import json
import logging

from config import settings
from models import Actor, ActorRole, Driver
from services.chat_service import ChatService, thread_id_for
from services.driver_service import DriverService
from services.exceptions import DispatchError, ForbiddenError, ValidationError
from services.order_lifecycle import OrderLifecycle
from services.realtime_hub import WebSocketConnection, driver_topic, order_topic, thread_topic
from utils.auth import verify_token

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/realtime", tags=["Realtime"])

def _int_field(message: dict, key: str) -> int:
    value = message.get(key)
    if isinstance(value, bool):
        raise ValidationError(f"'{key}' must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"'{key}' must be an integer")

def _float_field(message: dict, key: str, required: bool = True) -> Optional[float]:
    value = message.get(key)
    if value is None and not required:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"'{key}' must be a number")
    return float(value)

def _str_field(message: dict, key: str, required: bool = True) -> Optional[str]:
    value = message.get(key)
    if value is None and not required:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"'{key}' must be a string")
    return value

class RealtimeSession:
    """Handles client messages for one authenticated socket"""

    def __init__(self, app, connection: WebSocketConnection, actor: Actor):
        self.hub = app.state.hub
        self.geo_index = app.state.geo_index
        self.session_factory = app.state.session_factory
        self.connection = connection
        self.actor = actor

    def handle(self, message: dict) -> dict:
        kind = message.get("type")
        if kind == "ping":
            return {"type": "pong"}

        db = self.session_factory()
        try:
            if kind == "join-order":
                order_id = _int_field(message, "orderId")
                OrderLifecycle(db, self.hub).get_order(order_id, self.actor)
                return self._join(order_topic(order_id))
            if kind == "leave-order":
                return self._leave(order_topic(_int_field(message, "orderId")))

            if kind == "join-driver":
                return self._join(driver_topic(self._driver_room(db, message)))
            if kind == "leave-driver":
                return self._leave(driver_topic(_int_field(message, "driverId")))

            if kind == "chat:join":
                thread_id = self._thread(message)
                if not ChatService(db).can_access(thread_id, self.actor):
                    raise ForbiddenError("Not allowed to join this thread")
                return self._join(thread_topic(thread_id))
            if kind == "chat:leave":
                return self._leave(thread_topic(self._thread(message)))

            if kind == "driver-location":
                if self.actor.role != ActorRole.DRIVER:
                    raise ForbiddenError("Only drivers can push locations")
                order_id = message.get("orderId")
                driver = DriverService(db, self.geo_index, self.hub).update_location(
                    self.actor.user_id,
                    _float_field(message, "lat"),
                    _float_field(message, "lng"),
                    heading=_float_field(message, "heading", required=False),
                    speed=_float_field(message, "speed", required=False),
                    order_id=_int_field(message, "orderId") if order_id is not None else None,
                )
                return {"type": "ack", "event": "driver-location", "driverId": driver.id}

            if kind == "chat:message":
                thread_id = self._thread(message)
                sent = ChatService(db, self.hub).send_message(thread_id, self.actor, _str_field(message, "text"))
                return {"type": "ack", "event": "chat:message", "id": sent.id}
            if kind == "chat:read":
                thread_id = self._thread(message)
                updated = ChatService(db, self.hub).mark_read(thread_id, self.actor)
                return {"type": "ack", "event": "chat:read", "updated": updated}

            return {"type": "error", "error": "ValidationError", "detail": f"Unknown message type: {kind}"}
        finally:
            db.close()

    def _driver_room(self, db, message: dict) -> int:
        if self.actor.role == ActorRole.DRIVER:
            driver = db.query(Driver).filter(Driver.user_id == self.actor.user_id).first()
            if driver is None:
                raise ForbiddenError("Driver profile not found")
            if message.get("driverId") is not None and _int_field(message, "driverId") != driver.id:
                raise ForbiddenError("Drivers can only join their own room")
            return driver.id
        if self.actor.role == ActorRole.ADMIN:
            return _int_field(message, "driverId")
        raise ForbiddenError("Not allowed to join driver rooms")

    def _thread(self, message: dict) -> str:
        """threadId from the message, defaulting to the caller's own thread"""
        return _str_field(message, "threadId", required=False) or thread_id_for(self.actor.user_id)

    def _join(self, topic: str) -> dict:
        self.hub.subscribe(self.connection, topic)
        return {"type": "joined", "topic": topic}

    def _leave(self, topic: str) -> dict:
        self.hub.unsubscribe(self.connection, topic)
        return {"type": "left", "topic": topic}

@router.websocket("/ws")
async def realtime_endpoint(websocket: WebSocket, token: str = Query(...)):
    """
    WebSocket endpoint for live order, driver and chat updates
    Requires authentication via token query parameter
    """
    actor = verify_token(token)
    if actor is None:
        await websocket.close(code=1008, reason="Invalid authentication token")
        return
    if websocket.app.state.session_factory is None:
        await websocket.close(code=1011, reason="Database not configured")
        return

    await websocket.accept()
    connection = WebSocketConnection(
        websocket,
        user_id=actor.user_id,
        role=actor.role.value,
        max_queue=settings.realtime_queue_size,
    )
    session = RealtimeSession(websocket.app, connection, actor)
    hub = websocket.app.state.hub
    writer = asyncio.create_task(connection.run())
    logger.info(f"Realtime connection opened for {actor.role.value} {actor.label}")

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                message = json.loads(raw)
                if not isinstance(message, dict):
                    raise ValueError("message must be an object")
            except ValueError:
                connection.send({"type": "error", "error": "ValidationError", "detail": "Messages must be JSON objects"})
                continue

            try:
                reply = await run_in_threadpool(session.handle, message)
            except DispatchError as e:
                reply = {"type": "error", "error": type(e).__name__, "detail": e.detail, "request": message.get("type")}
            except ValueError as e:
                reply = {"type": "error", "error": "ValidationError", "detail": str(e), "request": message.get("type")}
            except Exception as e:
                logger.error(f"Realtime message {message.get('type')} failed: {e}", exc_info=True)
                reply = {"type": "error", "error": "InternalError", "detail": "An internal error occurred", "request": message.get("type")}
            connection.send(reply)
    except WebSocketDisconnect:
        pass
    finally:
        hub.disconnect(connection)
        writer.cancel()
        try:
            await writer
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.debug(f"Realtime writer ended with {e}")
        logger.info(f"Realtime connection closed for {actor.role.value} {actor.label}")
