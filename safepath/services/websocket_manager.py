import asyncio
import json
import logging
from typing import Any, Dict, Optional, Set

from fastapi import WebSocket
import redis.asyncio as aioredis

from ..config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()

CHANNEL_PREFIX = "navigation:"


def session_channel(session_id: str) -> str:
    return f"{CHANNEL_PREFIX}{session_id}"


class WebSocketManager:
    def __init__(self):
        # Active connections organized by channel (one channel per navigation session)
        self.active_connections: Dict[str, Set[WebSocket]] = {}
        self.connection_data: Dict[WebSocket, Dict[str, Any]] = {}
        self.redis_client: Optional[aioredis.Redis] = None
        self.redis_pubsub: Optional[aioredis.client.PubSub] = None
        self.redis_listener_task: Optional[asyncio.Task] = None

    async def initialize_redis(self):
        """Initialize Redis pub/sub so updates reach clients connected to any worker"""
        if not settings.redis_url:
            logger.info("REDIS_URL not set; navigation updates are broadcast in-process")
            return
        try:
            self.redis_client = aioredis.from_url(settings.redis_url)
            self.redis_pubsub = self.redis_client.pubsub()
            await self.redis_pubsub.psubscribe(f"{CHANNEL_PREFIX}*")

            self.redis_listener_task = asyncio.create_task(self._redis_listener())
            logger.info("Redis pub/sub initialized successfully")

        except (aioredis.RedisError, OSError) as e:
            logger.error(f"Failed to initialize Redis: {e}")
            self.redis_client = None
            self.redis_pubsub = None

    async def _redis_listener(self):
        """Listen for Redis pub/sub messages and broadcast to WebSocket clients"""
        if not self.redis_pubsub:
            return

        try:
            async for message in self.redis_pubsub.listen():
                if message["type"] != "pmessage":
                    continue
                channel = message["channel"]
                if isinstance(channel, bytes):
                    channel = channel.decode()
                data = json.loads(message["data"])
                await self._broadcast_to_channel(channel, data)

        except aioredis.RedisError as e:
            logger.error(f"Redis listener error: {e}")

    async def connect(self, websocket: WebSocket, session_id: str, client_data: Dict[str, Any]):
        """Accept a WebSocket connection and add it to the session's channel"""
        await websocket.accept()
        channel = session_channel(session_id)

        self.active_connections.setdefault(channel, set()).add(websocket)
        self.connection_data[websocket] = {
            "channel": channel,
            "device_id": client_data.get("device_id"),
            "connected_at": asyncio.get_running_loop().time(),
        }

        logger.info(f"WebSocket connected to channel '{channel}' for device {client_data.get('device_id')}")

    def disconnect(self, websocket: WebSocket):
        if websocket not in self.connection_data:
            return
        channel = self.connection_data[websocket]["channel"]
        device_id = self.connection_data[websocket].get("device_id")

        if channel in self.active_connections:
            self.active_connections[channel].discard(websocket)
            if not self.active_connections[channel]:
                del self.active_connections[channel]

        del self.connection_data[websocket]
        logger.info(f"WebSocket disconnected from channel '{channel}' for device {device_id}")

    async def send_personal_message(self, message: Dict[str, Any], websocket: WebSocket):
        try:
            await websocket.send_text(json.dumps(message))
        except (RuntimeError, OSError) as e:
            logger.error(f"Failed to send personal message: {e}")
            self.disconnect(websocket)

    async def _broadcast_to_channel(self, channel: str, message: Dict[str, Any]):
        connections = list(self.active_connections.get(channel, ()))
        if not connections:
            return

        results = await asyncio.gather(
            *(connection.send_text(json.dumps(message)) for connection in connections),
            return_exceptions=True,
        )

        # Clean up failed connections
        for connection, result in zip(connections, results):
            if isinstance(result, Exception):
                logger.error(f"Failed to send message to WebSocket: {result}")
                self.disconnect(connection)

    async def publish(self, session_id: str, event: str, payload: Dict[str, Any]):
        """Publish a navigation event, through Redis when available"""
        channel = session_channel(session_id)
        message = {"event": event, "session_id": session_id, "data": payload}

        if not self.redis_client:
            await self._broadcast_to_channel(channel, message)
            return

        try:
            await self.redis_client.publish(channel, json.dumps(message))
        except aioredis.RedisError as e:
            logger.error(f"Failed to publish to Redis: {e}")
            await self._broadcast_to_channel(channel, message)

    def get_channel_stats(self) -> Dict[str, Any]:
        return {
            "total_connections": sum(len(c) for c in self.active_connections.values()),
            "channels": {channel: len(c) for channel, c in self.active_connections.items()},
        }

    async def cleanup(self):
        if self.redis_listener_task:
            self.redis_listener_task.cancel()
            try:
                await self.redis_listener_task
            except asyncio.CancelledError:
                pass

        if self.redis_pubsub:
            await self.redis_pubsub.punsubscribe()
            await self.redis_pubsub.aclose()

        if self.redis_client:
            await self.redis_client.aclose()


# Global WebSocket manager instance
websocket_manager = WebSocketManager()


async def initialize_websocket_manager():
    await websocket_manager.initialize_redis()


async def cleanup_websocket_manager():
    await websocket_manager.cleanup()
