from typing import Any, Dict, Optional
from urllib.parse import urlparse

import httpx


class UrlFetcher:
    def __init__(self, max_chars: int = 100_000, timeout: float = 20.0, client: Optional[httpx.AsyncClient] = None):
        self.max_chars = max_chars
        self.client = client or httpx.AsyncClient(
            timeout=timeout,
            follow_redirects=True,
            limits=httpx.Limits(max_connections=16, max_keepalive_connections=8),
        )

    async def fetch(self, url: str) -> Dict[str, Any]:
        parsed = urlparse(url or "")
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            return {"error": f"Unsupported URL: {url}"}
        try:
            resp = await self.client.get(url)
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            return {"error": f"HTTP {e.response.status_code} fetching {url}"}
        except httpx.RequestError as e:
            return {"error": f"Request failed: {e}"}
        text = resp.text
        truncated = len(text) > self.max_chars
        return {"content": text[: self.max_chars], "truncated": truncated}

    async def close(self) -> None:
        # Safe to call multiple times
        if not self.client.is_closed:
            await self.client.aclose()
