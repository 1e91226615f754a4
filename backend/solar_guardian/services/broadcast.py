import logging
from collections import deque
from typing import Any, List

from fastapi import WebSocket
from starlette.requests import HTTPConnection

logger = logging.getLogger("solar_guardian.broadcast")

NEW_RESULT = "new_result"


class Broadcaster:
    """Fan-out of vision results to connected dashboards.

    Keeps the most recent ``capacity`` results, newest first, so a dashboard
    that connects late gets immediate content. The backlog is a convenience
    copy; the database stays authoritative and the backlog is gone after a
    restart.
    """

    def __init__(self, capacity: int = 50):
        self._backlog: deque = deque(maxlen=capacity)
        self._clients: set = set()

    @property
    def capacity(self) -> int:
        return self._backlog.maxlen

    @property
    def client_count(self) -> int:
        return len(self._clients)

    def record(self, result: dict) -> None:
        self._backlog.appendleft(result)

    def backlog(self) -> List[dict]:
        return list(self._backlog)

    def remove(self, result_id: str) -> int:
        kept = [r for r in self._backlog if r.get("id") != result_id]
        removed = len(self._backlog) - len(kept)
        self._backlog.clear()
        self._backlog.extend(kept)
        return removed

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        self._clients.add(websocket)
        try:
            for result in self.backlog():
                await websocket.send_json({"event": NEW_RESULT, "data": result})
        except Exception:
            self.disconnect(websocket)
            raise

    def disconnect(self, websocket: WebSocket) -> None:
        self._clients.discard(websocket)

    async def publish(self, event: str, data: Any) -> None:
        message = {"event": event, "data": data}
        dead = []
        for ws in list(self._clients):
            try: await ws.send_json(message)
            except Exception as exc:
                logger.warning("Dropping observer after failed send: %s", exc)
                dead.append(ws)
        for d in dead: self._clients.discard(d)


def get_broadcaster(conn: HTTPConnection) -> Broadcaster:
    return conn.app.state.broadcaster
