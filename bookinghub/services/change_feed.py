import asyncio
from typing import Dict, Set, Any

import structlog
from fastapi import WebSocket


logger = structlog.get_logger(__name__)

CHANGE_TYPES = ("INSERT", "UPDATE", "DELETE")


class ChangeFeed:
    """WebSocket subscribers keyed by table name. Delivery is best-effort."""

    def __init__(self) -> None:
        # table -> set of WebSocket connections
        self._subscribers: Dict[str, Set[WebSocket]] = {}
        self._lock = asyncio.Lock()

    async def subscribe(self, table: str, ws: WebSocket) -> None:
        async with self._lock:
            self._subscribers.setdefault(table, set()).add(ws)

    async def unsubscribe(self, table: str, ws: WebSocket) -> None:
        async with self._lock:
            conns = self._subscribers.get(table)
            if conns is not None:
                conns.discard(ws)
                if not conns:
                    self._subscribers.pop(table, None)

    def subscriber_count(self, table: str) -> int:
        return len(self._subscribers.get(table, ()))

    async def publish(self, table: str, change_type: str, record_id: Any = None) -> int:
        """Notify every subscriber of `table`. Returns how many were reached."""
        data = {
            "event": "change",
            "data": {"table": table, "type": change_type, "id": str(record_id) if record_id is not None else None},
        }
        async with self._lock:
            targets = list(self._subscribers.get(table, set()))
        sent = 0
        dead = []
        for ws in targets:
            try:
                await ws.send_json(data)
                sent += 1
            except Exception as e:  # closed sockets raise a variety of errors
                logger.info("change_feed_drop", table=table, error=str(e))
                dead.append(ws)
        for ws in dead:
            await self.unsubscribe(table, ws)
        return sent


# Global singleton feed
feed = ChangeFeed()
