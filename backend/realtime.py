# backend/realtime.py
import json
import logging
from fastapi import WebSocket, WebSocketDisconnect

logger = logging.getLogger(__name__)

class ConnectionManager:
    """Relays edit events from one client to every other connected client."""

    def __init__(self):
        self.active_connections: list = []

    async def connect(self, websocket: WebSocket):
        await websocket.accept()
        self.active_connections.append(websocket)
        logger.info(f"User connected: {id(websocket)}")

    def disconnect(self, websocket: WebSocket):
        if websocket in self.active_connections:
            self.active_connections.remove(websocket)
            logger.info(f"User disconnected: {id(websocket)}")

    async def broadcast_except(self, sender: WebSocket, message: dict):
        for connection in list(self.active_connections):
            if connection is sender:
                continue
            try:
                await connection.send_json(message)
            except Exception as e:
                logger.warning(f"Dropping connection {id(connection)} after failed send: {e}")
                self.disconnect(connection)

    async def handle_message(self, sender: WebSocket, raw: str):
        try:
            message = json.loads(raw)
        except json.JSONDecodeError:
            logger.debug("Ignoring non-JSON frame")
            return
        if not isinstance(message, dict) or message.get("event") != "edit":
            logger.debug(f"Ignoring unknown event: {message!r}")
            return
        await self.broadcast_except(sender, {"event": "update", "data": message.get("data")})

    async def serve(self, websocket: WebSocket):
        await self.connect(websocket)
        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    raise WebSocketDisconnect(message.get("code", 1000))
                raw = message.get("text")
                if raw is None:
                    logger.debug("Ignoring binary frame")
                    continue
                await self.handle_message(websocket, raw)
        except WebSocketDisconnect:
            pass
        finally:
            self.disconnect(websocket)

manager = ConnectionManager()
