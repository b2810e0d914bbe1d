"""Upstash-style REST key-value client.

Every failure (not configured, network, auth, bad payload) degrades to
"absent" so callers can treat the store as optional.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Protocol
from urllib.parse import quote

import httpx

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 60 * 60 * 36


class KeyValueStore(Protocol):
    @property
    def configured(self) -> bool: ...

    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str, ttl_seconds: int = DEFAULT_TTL_SECONDS) -> bool: ...

    async def set_if_absent(self, key: str, value: str, ttl_seconds: int = DEFAULT_TTL_SECONDS) -> bool: ...

    async def delete(self, key: str) -> None: ...


class KVClient:
    def __init__(self, base_url: str, token: str, client: httpx.AsyncClient | None = None, timeout: float = 10):
        self.base_url = (base_url or "").rstrip("/")
        self.token = token or ""
        self._shared = client
        self._timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self.base_url and self.token)

    @asynccontextmanager
    async def _client(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._shared is not None:
            yield self._shared
            return
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            yield client

    async def _call(self, path: str, params: dict | None = None) -> dict | None:
        headers = {"Authorization": f"Bearer {self.token}"}
        try:
            async with self._client() as client:
                resp = await client.get(f"{self.base_url}/{path}", params=params, headers=headers)
            if resp.status_code != 200:
                logger.warning("KV %s returned %s", path.split("/", 1)[0], resp.status_code)
                return None
            data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("KV %s failed: %s", path.split("/", 1)[0], e)
            return None
        return data if isinstance(data, dict) else None

    async def get(self, key: str) -> str | None:
        if not self.configured:
            return None
        data = await self._call(f"get/{quote(key, safe='')}")
        result = data.get("result") if data else None
        return result if isinstance(result, str) else None

    async def set(self, key: str, value: str, ttl_seconds: int = DEFAULT_TTL_SECONDS) -> bool:
        if not self.configured:
            return False
        data = await self._call(
            f"set/{quote(key, safe='')}/{quote(value, safe='')}",
            params={"ex": ttl_seconds},
        )
        return bool(data and data.get("result") == "OK")

    async def set_if_absent(self, key: str, value: str, ttl_seconds: int = DEFAULT_TTL_SECONDS) -> bool:
        """Atomic SET NX. True only when this call created the key."""
        if not self.configured:
            return False
        data = await self._call(
            f"set/{quote(key, safe='')}/{quote(value, safe='')}",
            params={"ex": ttl_seconds, "nx": "true"},
        )
        return bool(data and data.get("result") == "OK")

    async def delete(self, key: str) -> None:
        if not self.configured:
            return
        await self._call(f"del/{quote(key, safe='')}")
