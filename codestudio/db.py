import json
import time
from datetime import datetime
from typing import Any, List, Optional, Tuple

import aiosqlite

from .schemas import ConversationMessage


def utc_now() -> str:
    return datetime.utcnow().isoformat() + "Z"


def _row_to_message(row: aiosqlite.Row) -> ConversationMessage:
    return ConversationMessage(
        role=row["role"],
        content=row["content"] or "",
        images=json.loads(row["images_json"] or "[]"),
        timestamp=row["timestamp"],
        is_tool_output=bool(row["is_tool_output"]),
        tool_name=row["tool_name"],
    )


class Database:
    def __init__(self, path: str):
        self.path = path

    async def init(self) -> None:
        async with aiosqlite.connect(self.path) as db:
            await db.executescript(
                """
                PRAGMA journal_mode=WAL;
                CREATE TABLE IF NOT EXISTS messages(
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    session_id TEXT,
                    agent_id TEXT,
                    role TEXT,
                    content TEXT,
                    images_json TEXT,
                    is_tool_output INTEGER DEFAULT 0,
                    tool_name TEXT,
                    timestamp REAL
                );
                CREATE INDEX IF NOT EXISTS idx_messages_agent ON messages(session_id, agent_id, id);
                CREATE TABLE IF NOT EXISTS events(
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    session_id TEXT,
                    seq INTEGER,
                    event_type TEXT,
                    payload_json TEXT,
                    created_at TEXT
                );
                """
            )
            await db.commit()

    async def execute(self, query: str, params: Tuple[Any, ...] = ()) -> None:
        async with aiosqlite.connect(self.path) as db:
            await db.execute(query, params)
            await db.commit()

    async def fetchall(self, query: str, params: Tuple[Any, ...] = ()) -> List[aiosqlite.Row]:
        async with aiosqlite.connect(self.path) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(query, params)
            rows = await cursor.fetchall()
            await cursor.close()
            return list(rows)

    async def fetchone(self, query: str, params: Tuple[Any, ...] = ()) -> Optional[aiosqlite.Row]:
        rows = await self.fetchall(query, params)
        return rows[0] if rows else None

    async def add_message(self, session_id: str, agent_id: str, message: ConversationMessage) -> ConversationMessage:
        stamped = message if message.timestamp is not None else message.model_copy(update={"timestamp": time.time()})
        await self.execute(
            "INSERT INTO messages(session_id, agent_id, role, content, images_json, is_tool_output, tool_name, timestamp) "
            "VALUES (?,?,?,?,?,?,?,?)",
            (
                session_id,
                agent_id,
                stamped.role,
                stamped.content,
                json.dumps(stamped.images),
                int(stamped.is_tool_output),
                stamped.tool_name,
                stamped.timestamp,
            ),
        )
        return stamped

    async def list_agent_messages(self, session_id: str, agent_id: str) -> List[ConversationMessage]:
        rows = await self.fetchall(
            "SELECT * FROM messages WHERE session_id=? AND agent_id=? ORDER BY id ASC",
            (session_id, agent_id),
        )
        return [_row_to_message(row) for row in rows]

    async def list_session_messages(self, session_id: str) -> List[dict]:
        """All agents' messages merged into one timeline."""
        rows = await self.fetchall(
            "SELECT * FROM messages WHERE session_id=? ORDER BY timestamp ASC, id ASC",
            (session_id,),
        )
        return [{"agent_id": row["agent_id"], **_row_to_message(row).model_dump()} for row in rows]

    async def next_event_seq(self, session_id: str) -> int:
        row = await self.fetchone("SELECT MAX(seq) AS seq FROM events WHERE session_id=?", (session_id,))
        return int(row["seq"] or 0) + 1 if row else 1

    async def add_event(self, session_id: str, event_type: str, payload: dict) -> dict:
        seq = await self.next_event_seq(session_id)
        created_at = utc_now()
        await self.execute(
            "INSERT INTO events(session_id, seq, event_type, payload_json, created_at) VALUES (?,?,?,?,?)",
            (session_id, seq, event_type, json.dumps(payload, default=str), created_at),
        )
        return {"session_id": session_id, "seq": seq, "event_type": event_type, "payload": payload, "created_at": created_at}

    async def list_events(self, session_id: str, after_seq: int = 0) -> List[dict]:
        rows = await self.fetchall(
            "SELECT seq, event_type, payload_json, created_at FROM events WHERE session_id=? AND seq>? ORDER BY seq ASC",
            (session_id, after_seq),
        )
        return [
            {
                "seq": row["seq"],
                "event_type": row["event_type"],
                "payload": json.loads(row["payload_json"] or "{}"),
                "created_at": row["created_at"],
            }
            for row in rows
        ]
