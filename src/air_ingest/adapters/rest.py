# adapters/rest.py
import aiohttp
import asyncio
import json
from typing import Any, Dict, Optional
from .base import CommunicationAdapter
from ..utils.logging import get_logger
from ..utils.exceptions import FetchError, PayloadError

logger = get_logger(__name__)

DEFAULT_USER_AGENT = "air-ingest/0.1"


class RestAPIAdapter(CommunicationAdapter):
    """
    Shared HTTP client for polled sources and metadata lookups.
    One attempt per call; the callers own their retry policy.
    """
    def __init__(self, timeout_seconds: float = 15.0, default_headers: Optional[Dict[str, str]] = None):
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self.default_headers = {"Accept": "application/json", "User-Agent": DEFAULT_USER_AGENT}
        self.default_headers.update(default_headers or {})
        self.session: Optional[aiohttp.ClientSession] = None
        self.is_connected = False

    async def connect(self) -> None:
        if self.session and not self.session.closed:
            return
        self.session = aiohttp.ClientSession(timeout=self.timeout, headers=self.default_headers)
        self.is_connected = True
        logger.info("Created HTTP session")

    async def disconnect(self) -> None:
        if self.session:
            try:
                await self.session.close()
                logger.info("Closed HTTP session")
            finally:
                self.session = None
                self.is_connected = False

    async def get_json(
        self,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, Any]] = None
    ) -> Any:
        """GET ``url`` and decode its JSON body"""
        if not self.is_connected:
            await self.connect()

        try:
            async with self.session.get(url, headers=headers, params=params) as response:
                body = await response.text()
                if response.status >= 400:
                    raise FetchError(
                        f"GET {url} returned HTTP {response.status}: {body[:200]}",
                        status=response.status
                    )
        except asyncio.TimeoutError:
            raise FetchError(f"GET {url} timed out after {self.timeout.total}s")
        except aiohttp.ClientError as e:
            raise FetchError(f"GET {url} failed: {e}")

        try:
            return json.loads(body)
        except json.JSONDecodeError as e:
            raise PayloadError(f"Response from {url} is not valid JSON: {e}")
