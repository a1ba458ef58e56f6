import asyncio
from typing import Any, Awaitable, Callable, Optional
from pydantic import BaseModel, Field
import aiomqtt as mqtt
import ssl
import traceback
from ..adapters.base import CommunicationAdapter
from ..models.source import Source
from ..utils.logging import get_logger
from ..utils.exceptions import CommunicationError

logger = get_logger(__name__)

'''
usage Examples

connection = BrokerConnection(BrokerConnectionConfig.from_source(source, client_prefix="air-ingest"),
                              on_message=handle_message)
await connection.connect()      # returns immediately, connects in the background
...
await connection.disconnect()   # stops reconnecting and disposes the client

'''

MessageHandler = Callable[[str, bytes], Awaitable[None]]
ConnectedHandler = Callable[[], Awaitable[None]]
DisconnectedHandler = Callable[[str], Awaitable[None]]


class BrokerConnectionConfig(BaseModel):
    """Connection settings for one external broker"""
    host: str = Field(..., description="MQTT broker hostname")
    port: int = Field(1883, description="MQTT broker port")
    topic: str = Field(..., description="Topic filter to subscribe to")
    username: Optional[str] = Field(None, description="MQTT username")
    password: Optional[str] = Field(None, description="MQTT password")
    use_tls: bool = Field(False, description="Enable SSL/TLS")
    client_id: str = Field(..., description="MQTT client ID")
    keepalive: int = Field(60, description="Connection keepalive in seconds")
    reconnect_interval: float = Field(5.0, description="Fixed delay before reconnecting, in seconds")
    message_queue_size: int = Field(1000, description="Maximum number of undelivered messages")
    subscribe_qos: int = Field(0, ge=0, le=2, description="qos for the subscription")

    @classmethod
    def from_source(cls, source: Source, client_prefix: str = "air-ingest", **overrides) -> "BrokerConnectionConfig":
        return cls(
            host=source.broker_host,
            port=source.broker_port,
            topic=source.topic,
            username=source.username,
            password=source.password,
            use_tls=source.use_tls,
            client_id=f"{client_prefix}-{source.id}",
            **overrides
        )


class BrokerConnection(CommunicationAdapter):
    """
    One long-lived subscription to one broker.

    The connection reconnects on its own after a fixed delay until
    disconnect() is called. Messages are queued and handed to ``on_message``
    by a single worker, so they are handled in delivery order.
    """
    def __init__(
        self,
        config: BrokerConnectionConfig,
        on_message: MessageHandler,
        on_connected: Optional[ConnectedHandler] = None,
        on_disconnected: Optional[DisconnectedHandler] = None
    ):
        self.config = config
        self.on_message = on_message
        self.on_connected = on_connected
        self.on_disconnected = on_disconnected

        self.client: Optional[mqtt.Client] = None
        self.connected = asyncio.Event()
        self._stop_flag = asyncio.Event()
        self._message_queue: asyncio.Queue = asyncio.Queue(maxsize=config.message_queue_size)
        self._connection_task: Optional[asyncio.Task] = None
        self._worker_task: Optional[asyncio.Task] = None

    def _create_tls_context(self) -> Optional[ssl.SSLContext]:
        if not self.config.use_tls:
            return None
        context = ssl.create_default_context()
        context.minimum_version = ssl.TLSVersion.TLSv1_2
        return context

    async def _notify(self, callback, *args) -> None:
        if callback is None:
            return
        try:
            await callback(*args)
        except Exception:
            logger.error(f"[{self.config.client_id}] connection callback failed: {traceback.format_exc()}")

    async def _run(self) -> None:
        """Connect, subscribe and read until stopped, reconnecting after every loss"""
        while not self._stop_flag.is_set():
            reason = "connection closed"
            try:
                async with mqtt.Client(
                    hostname=self.config.host,
                    port=self.config.port,
                    username=self.config.username,
                    password=self.config.password,
                    keepalive=self.config.keepalive,
                    identifier=self.config.client_id,
                    clean_session=True,
                    tls_context=self._create_tls_context()
                ) as client:
                    self.client = client
                    await client.subscribe(self.config.topic, qos=self.config.subscribe_qos)
                    self.connected.set()
                    logger.info(f"Connected to {self.config.host}:{self.config.port}, subscribed to {self.config.topic}")
                    await self._notify(self.on_connected)

                    async for message in client.messages:
                        self._enqueue(str(message.topic), message.payload)
            except asyncio.CancelledError:
                raise
            except mqtt.MqttError as e:
                reason = str(e) or e.__class__.__name__
            except Exception as e:
                reason = f"{e.__class__.__name__}: {e}"
                logger.error(f"Unexpected error on {self.config.host}:{self.config.port}: {traceback.format_exc()}")
            finally:
                self.connected.clear()
                self.client = None

            if self._stop_flag.is_set():
                break

            logger.warning(
                f"Disconnected from {self.config.host}:{self.config.port}: {reason}. "
                f"Reconnecting in {self.config.reconnect_interval}s"
            )
            await self._notify(self.on_disconnected, reason)
            try:
                await asyncio.wait_for(self._stop_flag.wait(), timeout=self.config.reconnect_interval)
            except asyncio.TimeoutError:
                pass

    def _enqueue(self, topic: str, payload: Any) -> None:
        if isinstance(payload, str):
            payload = payload.encode()
        elif not isinstance(payload, (bytes, bytearray)):
            payload = str(payload).encode()
        try:
            self._message_queue.put_nowait((topic, bytes(payload)))
        except asyncio.QueueFull:
            logger.warning(f"[{self.config.client_id}] message queue full, dropping message from {topic}")

    async def _process_message_queue(self) -> None:
        """Hand queued messages to the handler one at a time"""
        while True:
            topic, payload = await self._message_queue.get()
            try:
                await self.on_message(topic, payload)
            except Exception:
                logger.error(f"Error in message handler for topic {topic}: {traceback.format_exc()}")
            finally:
                self._message_queue.task_done()

    async def connect(self) -> None:
        """Start the connection loop and the message worker"""
        if self._connection_task and not self._connection_task.done():
            return
        try:
            self._stop_flag.clear()
            self._worker_task = asyncio.create_task(self._process_message_queue())
            self._connection_task = asyncio.create_task(self._run())
        except Exception as e:
            raise CommunicationError(f"Failed to start broker connection: {str(e)}")

    async def disconnect(self) -> None:
        """Stop reconnecting, close the client and drop undelivered messages"""
        self._stop_flag.set()
        for task in (self._connection_task, self._worker_task):
            if task and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._connection_task = None
        self._worker_task = None
        self.connected.clear()
        dropped = self._message_queue.qsize()
        self._message_queue = asyncio.Queue(maxsize=self.config.message_queue_size)
        if dropped:
            logger.info(f"[{self.config.client_id}] dropped {dropped} undelivered messages on disconnect")
        logger.info(f"Broker connection {self.config.client_id} stopped")
