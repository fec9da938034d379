"""
Notifier
Broadcasts job and printer events to connected WebSocket clients
"""

import logging
from typing import Any, Dict, List, Sequence

from fastapi import WebSocket

from .models import PrintJob

JOB_CREATED = "printCreated"
JOB_UPDATED = "printUpdate"
DEVICE_LIST = "printerList"


class ConnectionManager:
    """Tracks WebSocket subscribers; delivery is best-effort"""

    def __init__(self):
        self.active_connections: List[WebSocket] = []
        self.messages_sent = 0
        self.logger = logging.getLogger(__name__)

    async def connect(self, websocket: WebSocket):
        await websocket.accept()
        self.active_connections.append(websocket)
        self.logger.info(f"WebSocket client connected ({len(self.active_connections)} active)")

    def disconnect(self, websocket: WebSocket):
        if websocket in self.active_connections:
            self.active_connections.remove(websocket)
            self.logger.info(f"WebSocket client disconnected ({len(self.active_connections)} active)")

    async def broadcast(self, event: str, data: Any):
        message = {"type": event, "data": data}
        dead: List[WebSocket] = []

        for connection in list(self.active_connections):
            try:
                await connection.send_json(message)
                self.messages_sent += 1
            except Exception as e:
                # Client went away mid-send; never fail the caller
                self.logger.warning(f"Failed to deliver {event} event: {e}")
                dead.append(connection)

        for connection in dead:
            self.disconnect(connection)

    async def broadcast_job_created(self, job: PrintJob):
        await self.broadcast(JOB_CREATED, job.model_dump(mode="json"))

    async def broadcast_job_updated(self, job: PrintJob):
        await self.broadcast(JOB_UPDATED, job.model_dump(mode="json"))

    async def broadcast_device_list(self, devices: Sequence[Dict[str, Any]]):
        await self.broadcast(DEVICE_LIST, list(devices))

    def get_status(self) -> Dict[str, Any]:
        return {
            "connections": len(self.active_connections),
            "messages_sent": self.messages_sent,
        }
