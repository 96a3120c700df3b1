"""
Real-time push to connected WebSocket clients.

Route handlers never reach for the connection manager directly; they get a
``Notifier`` through the ``get_notifier`` dependency and call
``publish(topic, payload, room)`` after their write has been persisted.
Delivery is fire-and-forget: ``publish`` schedules the send on the server's
event loop and returns immediately.
"""
import asyncio
import logging
from collections import defaultdict
from typing import Dict, List, Optional, Protocol, Set

from fastapi import Request, WebSocket
from fastapi.encoders import jsonable_encoder

logger = logging.getLogger(__name__)


def user_room(user_id) -> str:
    return f"user-{user_id}"


class Notifier(Protocol):
    def publish(self, topic: str, payload: dict, room: Optional[str] = None) -> None:
        ...


class NullNotifier:
    def publish(self, topic: str, payload: dict, room: Optional[str] = None) -> None:
        return None


class ConnectionManager:
    def __init__(self):
        self.active: List[WebSocket] = []
        self.rooms: Dict[str, Set[WebSocket]] = defaultdict(set)
        self.loop: Optional[asyncio.AbstractEventLoop] = None
        self.pending: Set[asyncio.Task] = set()

    def bind(self, loop: asyncio.AbstractEventLoop) -> None:
        self.loop = loop

    async def connect(self, websocket: WebSocket):
        await websocket.accept()
        if self.loop is None:
            self.loop = asyncio.get_running_loop()
        self.active.append(websocket)
        logger.info("WebSocket connected (%d active)", len(self.active))

    def disconnect(self, websocket: WebSocket):
        if websocket in self.active:
            self.active.remove(websocket)
        for room in list(self.rooms):
            self.rooms[room].discard(websocket)
            if not self.rooms[room]:
                del self.rooms[room]

    def join(self, websocket: WebSocket, room: str):
        self.rooms[room].add(websocket)
        logger.info("WebSocket joined %s", room)

    async def broadcast(self, data: dict, room: Optional[str] = None):
        targets = list(self.rooms.get(room, ())) if room else list(self.active)
        for ws in targets:
            try:
                await ws.send_json(data)
            except Exception:
                logger.warning("Dropping WebSocket after failed send")
                self.disconnect(ws)

    def publish(self, topic: str, payload: dict, room: Optional[str] = None) -> None:
        if self.loop is None or not self.active:
            return
        frame = jsonable_encoder({"event": topic, "data": payload})
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self.loop:
            task = self.loop.create_task(self.broadcast(frame, room))
            self.pending.add(task)
            task.add_done_callback(self.pending.discard)
        else:
            asyncio.run_coroutine_threadsafe(self.broadcast(frame, room), self.loop)


def get_notifier(request: Request) -> Notifier:
    return request.app.state.notifier
