"""WebSocket support for real-time auto-mode updates.

Every event emitted on the event bus is relayed to connected clients:
- auto-mode:event with types auto_mode_started, auto_mode_stopped,
  auto_mode_feature_start, auto_mode_feature_complete, feature_interrupted, ...
"""

import asyncio
import json
import weakref
from datetime import datetime
from typing import Any, Callable, Set

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from ..protocols import EventSink

router = APIRouter()


class ConnectionManager:
    """Manages WebSocket connections for broadcasting events."""

    def __init__(self):
        self.active_connections: Set[WebSocket] = set()
        # Strong references to in-flight broadcasts
        self._pending: Set[asyncio.Task] = set()
        # Unsubscribe functions, keyed by the sink they were attached to
        self._attached: "weakref.WeakKeyDictionary[EventSink, Callable[[], None]]" = (
            weakref.WeakKeyDictionary()
        )

    async def connect(self, websocket: WebSocket):
        """Accept a new WebSocket connection."""
        await websocket.accept()
        self.active_connections.add(websocket)

    def disconnect(self, websocket: WebSocket):
        """Remove a WebSocket connection."""
        self.active_connections.discard(websocket)

    async def broadcast(self, event: str, data: dict):
        """Broadcast an event to all connected clients.

        Args:
            event: Event type (e.g., "auto-mode:event")
            data: Event data payload
        """
        message = json.dumps({
            "event": event,
            "data": data,
            "timestamp": datetime.now().isoformat()
        }, default=str)

        disconnected = []
        for connection in list(self.active_connections):
            try:
                await connection.send_text(message)
            except Exception:
                disconnected.append(connection)

        # Clean up disconnected clients
        for conn in disconnected:
            self.disconnect(conn)

    async def send_personal(self, websocket: WebSocket, event: str, data: dict):
        """Send an event to a specific client."""
        message = json.dumps({
            "event": event,
            "data": data,
            "timestamp": datetime.now().isoformat()
        })
        await websocket.send_text(message)

    def relay(self, event: str, data: dict[str, Any]) -> None:
        """Event bus callback: schedule a broadcast on the running loop.

        Events emitted outside an event loop have no clients to reach and are
        dropped.
        """
        if not self.active_connections:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        task = loop.create_task(self.broadcast(event, data))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    def attach(self, events: EventSink) -> Callable[[], None]:
        """Relay every event of an event sink; returns the unsubscribe function.

        Attaching the same sink again reuses the existing subscription.
        """
        if events not in self._attached:
            self._attached[events] = events.subscribe(self.relay)
        return lambda: self.detach(events)

    def detach(self, events: EventSink) -> None:
        """Stop relaying an event sink. No-op when it is not attached."""
        unsubscribe = self._attached.pop(events, None)
        if unsubscribe is not None:
            unsubscribe()


# Global connection manager
manager = ConnectionManager()


@router.websocket("/events")
async def websocket_events(websocket: WebSocket):
    """WebSocket endpoint for real-time events."""
    await manager.connect(websocket)

    try:
        # Send initial connection confirmation
        await manager.send_personal(websocket, "connected", {
            "message": "Connected to auto-mode events",
            "client_count": len(manager.active_connections)
        })

        while True:
            data = await websocket.receive_text()

            try:
                message = json.loads(data)

                if message.get("type") == "ping":
                    await manager.send_personal(websocket, "pong", {})

            except json.JSONDecodeError:
                # Ignore invalid JSON
                pass

    except WebSocketDisconnect:
        pass
    finally:
        manager.disconnect(websocket)
