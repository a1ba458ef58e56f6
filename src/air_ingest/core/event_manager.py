# Publish sink: fans finished observations out to live subscribers
import asyncio
from typing import Any, Awaitable, Callable, Dict, List
from ..utils.logging import get_logger

logger = get_logger(__name__)

EVENT_MQTT_DATA = "NewExternalMqttData"
EVENT_HTTP_DATA = "NewExternalData"

Subscriber = Callable[[Dict[str, Any]], Awaitable[None]]


class EventManager:
    def __init__(self, max_queue_size: int = 10000):
        self.subscribers: Dict[str, List[Subscriber]] = {}
        self.event_queue: asyncio.Queue = asyncio.Queue(maxsize=max_queue_size)

    async def publish(self, event_type: str, data: Dict[str, Any]) -> None:
        """Fire and forget, a full queue drops the event"""
        try:
            self.event_queue.put_nowait((event_type, data))
        except asyncio.QueueFull:
            logger.warning(f"Event queue full, dropping {event_type} event")

    async def subscribe(self, event_type: str, callback: Subscriber) -> None:
        self.subscribers.setdefault(event_type, []).append(callback)

    async def dispatch(self, event_type: str, data: Dict[str, Any]) -> None:
        for callback in self.subscribers.get(event_type, []):
            try:
                await callback(data)
            except Exception as e:
                logger.error(f"Subscriber for {event_type} failed: {e}")

    async def process_events(self) -> None:
        while True:
            event_type, data = await self.event_queue.get()
            try:
                await self.dispatch(event_type, data)
            finally:
                self.event_queue.task_done()
