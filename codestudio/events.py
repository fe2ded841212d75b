import asyncio
import json
from typing import Dict, List

from .db import Database


def sse_format(event: dict) -> str:
    return f"data: {json.dumps(event, default=str)}\n\n"


class EventBus:
    """In-memory fan-out for SSE plus persisted events."""

    def __init__(self, db: Database):
        self.db = db
        self.subscribers: Dict[str, List[asyncio.Queue]] = {}
        self.global_subscribers: List[asyncio.Queue] = []
        self.lock = asyncio.Lock()
        # Serializes seq allocation across concurrent emitters.
        self.write_lock = asyncio.Lock()

    async def emit(self, session_id: str, event_type: str, payload: dict) -> dict:
        safe_payload = dict(payload or {})
        safe_payload.setdefault("session_id", session_id)
        async with self.write_lock:
            stored = await self.db.add_event(session_id, event_type, safe_payload)
        async with self.lock:
            queues = list(self.subscribers.get(session_id, []))
            global_queues = list(self.global_subscribers)
        for q in queues:
            await q.put(stored)
        for q in global_queues:
            await q.put(stored)
        return stored

    async def subscribe(self, session_id: str) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue()
        async with self.lock:
            self.subscribers.setdefault(session_id, []).append(queue)
        return queue

    async def subscribe_global(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue()
        async with self.lock:
            self.global_subscribers.append(queue)
        return queue

    async def unsubscribe(self, session_id: str, queue: asyncio.Queue) -> None:
        async with self.lock:
            queues = self.subscribers.get(session_id, [])
            if queue in queues:
                queues.remove(queue)
            if not queues:
                self.subscribers.pop(session_id, None)

    async def unsubscribe_global(self, queue: asyncio.Queue) -> None:
        async with self.lock:
            if queue in self.global_subscribers:
                self.global_subscribers.remove(queue)
