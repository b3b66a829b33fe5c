"""
Shared aiohttp plumbing for the outbound API clients (gateway, email,
scheduler). One lazily created session per client, closed on shutdown.
"""

import asyncio
import logging
from typing import Any, Dict, Optional, Tuple

import aiohttp

logger = logging.getLogger(__name__)


class UpstreamHTTPError(Exception):
    """Transport failure or unreadable body; status is None for transport errors."""

    def __init__(self, message: str, status: Optional[int] = None, payload: Any = None):
        super().__init__(message)
        self.message = message
        self.status = status
        self.payload = payload


class JSONHTTPClient:
    """Lazy aiohttp session with JSON request helper"""

    def __init__(self, base_url: str, timeout_seconds: float = 30.0):
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.session: Optional[aiohttp.ClientSession] = None

    async def _ensure_session(self):
        """Ensure aiohttp session exists"""
        if self.session is None or self.session.closed:
            timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
            self.session = aiohttp.ClientSession(timeout=timeout)

    async def close(self):
        """Close aiohttp session"""
        if self.session and not self.session.closed:
            await self.session.close()

    async def request_json(
        self,
        method: str,
        path: str,
        headers: Optional[Dict[str, str]] = None,
        json_body: Any = None,
    ) -> Tuple[int, str, Any]:
        """
        Send one request and decode the body as JSON (None when empty).

        Returns:
            (status, reason, payload) for any HTTP status

        Raises:
            UpstreamHTTPError: connection, timeout or decode failure
        """
        await self._ensure_session()
        url = f"{self.base_url}{path}"
        try:
            async with self.session.request(method, url, headers=headers, json=json_body) as response:
                body = await response.text()
                payload = None
                if body.strip():
                    try:
                        payload = await response.json(content_type=None)
                    except ValueError:
                        if response.status < 400:
                            raise
                        payload = {"message": body}
                return response.status, response.reason or "", payload
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.error(f"{method} {url} failed: {e}")
            raise UpstreamHTTPError(str(e) or e.__class__.__name__) from e
