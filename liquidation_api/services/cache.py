from __future__ import annotations
# liquidation_api/services/cache.py
import httpx
from liquidation_api.config import settings

# Module-level singleton, one TLS connection pool for every Redis call.
_http = httpx.AsyncClient(
    timeout=httpx.Timeout(5.0, connect=2.0),
    limits=httpx.Limits(max_connections=20, max_keepalive_connections=10, keepalive_expiry=30),
)


class UpstashClient:
    def __init__(self):
        self.url = settings.UPSTASH_REDIS_REST_URL
        self.headers = {"Authorization": f"Bearer {settings.UPSTASH_REDIS_REST_TOKEN}"}

    @property
    def enabled(self) -> bool:
        return bool(self.url)

    async def command(self, *args) -> object:
        """Run one Redis command through the REST endpoint's JSON body form."""
        r = await _http.post(self.url, headers=self.headers, json=[str(a) for a in args])
        r.raise_for_status()
        return r.json().get("result")

    async def get(self, key: str) -> str | None:
        r = await _http.get(f"{self.url}/get/{key}", headers=self.headers)
        r.raise_for_status()
        return r.json().get("result")

    async def set(self, key: str, value: str, ex: int = 300):
        # JSON payloads do not fit in a URL path segment
        await self.command("SET", key, value, "EX", ex)

    async def delete(self, *keys: str):
        if keys:
            await self.command("DEL", *keys)

    async def ping(self) -> bool:
        r = await _http.get(f"{self.url}/ping", headers=self.headers)
        return r.json().get("result") == "PONG"

    async def close(self):
        await _http.aclose()


cache = UpstashClient()
