from fastapi import WebSocket
from typing import Dict, Optional, Set, Tuple
from datetime import datetime
import asyncio
import threading
import logging

logger = logging.getLogger(__name__)

TOPIC_KINDS = ("order", "driver", "thread")

def order_topic(order_id) -> str:
    return f"order:{order_id}"

def driver_topic(driver_id) -> str:
    return f"driver:{driver_id}"

def thread_topic(thread_id) -> str:
    return f"thread:{thread_id}"

def parse_topic(topic: str) -> Tuple[str, str]:
    """Split 'kind:id' into its parts, rejecting unknown kinds and empty ids"""
    kind, sep, ident = (topic or "").partition(":")
    if not sep or kind not in TOPIC_KINDS or not ident:
        raise ValueError(f"Invalid topic: {topic!r}")
    return kind, ident

class RealtimeHub:
    """
    Fan-out router for live updates.

    Connections are any object with a non-blocking send(message) method.
    Delivery is fire-and-forget: no acknowledgement, retry or persistence,
    and a publish with no subscribers does nothing.
    """

    def __init__(self):
        self._topics: Dict[str, Set[object]] = {}
        self._memberships: Dict[object, Set[str]] = {}
        self._lock = threading.RLock()

    def subscribe(self, connection, topic: str):
        parse_topic(topic)
        with self._lock:
            self._topics.setdefault(topic, set()).add(connection)
            self._memberships.setdefault(connection, set()).add(topic)
        logger.debug(f"Subscribed to {topic}")

    def unsubscribe(self, connection, topic: str):
        with self._lock:
            members = self._topics.get(topic)
            if members is not None:
                members.discard(connection)
                if not members:
                    del self._topics[topic]
            topics = self._memberships.get(connection)
            if topics is not None:
                topics.discard(topic)
                if not topics:
                    del self._memberships[connection]

    def disconnect(self, connection):
        """Drop a connection from every topic it joined"""
        with self._lock:
            for topic in list(self._memberships.get(connection, ())):
                self.unsubscribe(connection, topic)
            self._memberships.pop(connection, None)

    def topics_for(self, connection) -> Set[str]:
        with self._lock:
            return set(self._memberships.get(connection, ()))

    def subscriber_count(self, topic: str) -> int:
        with self._lock:
            return len(self._topics.get(topic, ()))

    def publish(self, topic: str, event: str, data: Optional[dict] = None) -> int:
        """Send an event to every current subscriber of topic; returns the number reached"""
        with self._lock:
            recipients = list(self._topics.get(topic, ()))
        if not recipients:
            return 0

        message = {
            "topic": topic,
            "event": event,
            "data": data or {},
            "at": datetime.utcnow().isoformat(),
        }

        delivered = 0
        failed = []
        for connection in recipients:
            try:
                connection.send(message)
                delivered += 1
            except Exception as e:
                logger.error(f"Failed to deliver {event} on {topic}: {e}")
                failed.append(connection)

        for connection in failed:
            self.disconnect(connection)

        return delivered

    def get_connection_count(self) -> dict:
        with self._lock:
            return {
                "connections": len(self._memberships),
                "topics": {topic: len(members) for topic, members in self._topics.items()},
            }

class WebSocketConnection:
    """
    Adapts a WebSocket to the hub's send contract.

    send() only enqueues, so it is safe from worker threads and from the
    event loop alike; run() drains the queue onto the socket.
    """

    def __init__(self, websocket: WebSocket, user_id: Optional[int] = None, role: Optional[str] = None, max_queue: int = 100):
        self.websocket = websocket
        self.user_id = user_id
        self.role = role
        self._loop = asyncio.get_running_loop()
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max_queue)

    def send(self, message: dict):
        if self._loop.is_closed():
            raise RuntimeError("connection event loop is closed")
        self._loop.call_soon_threadsafe(self._enqueue, message)

    def _enqueue(self, message: dict):
        try:
            self._queue.put_nowait(message)
        except asyncio.QueueFull:
            logger.warning(f"Realtime queue full for user_id={self.user_id}, dropping {message.get('event')}")

    async def run(self):
        while True:
            message = await self._queue.get()
            await self.websocket.send_json(message)
