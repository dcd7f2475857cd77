from __future__ import annotations

import asyncio
from typing import Any, Optional
from urllib.parse import unquote, urlparse

import aiohttp

from bridge_errors import AttachmentTooLarge, AttachmentTransferFailed
import settings_store as cfg

_CHUNK_BYTES = 64 * 1024


def attachment_filename(source_url: str) -> str:
    """Basename of the URL path (query/fragment ignored)."""
    try:
        path = urlparse(str(source_url or "")).path or ""
    except ValueError:
        path = ""
    base = unquote(path.rsplit("/", 1)[-1]).strip()
    return base or "file"


def _declared_length(resp: Any) -> Optional[int]:
    raw = resp.headers.get("Content-Length")
    if raw is None:
        return None
    try:
        return int(str(raw).strip())
    except ValueError:
        return None


class AttachmentFetcher:
    """
    Download a remote file into a writable sink with a size ceiling.

    A HEAD probe runs first so oversized files are refused before any byte
    is transferred. The body is then streamed chunk by chunk into the sink.
    """

    def __init__(self, session: aiohttp.ClientSession, *, max_bytes: Optional[int] = None):
        self._session = session
        self.max_bytes = int(max_bytes if max_bytes is not None else cfg.ATTACHMENT_MAX_BYTES)

    async def probe(self, source_url: str) -> Optional[int]:
        """Return the declared size of the remote file (None when not reported)."""
        try:
            async with self._session.head(source_url, allow_redirects=True) as resp:
                if resp.status >= 400:
                    raise AttachmentTransferFailed(source_url, f"HEAD returned HTTP {resp.status}")
                return _declared_length(resp)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise AttachmentTransferFailed(source_url, f"HEAD failed ({type(e).__name__}: {e})") from e

    async def fetch(self, source_url: str, sink) -> int:
        declared = await self.probe(source_url)
        if declared is not None and declared > self.max_bytes:
            raise AttachmentTooLarge(source_url, f"declared {declared} bytes > {self.max_bytes}")

        written = 0
        try:
            async with self._session.get(source_url) as resp:
                if resp.status != 200:
                    raise AttachmentTransferFailed(source_url, f"GET returned HTTP {resp.status}")
                async for chunk in resp.content.iter_chunked(_CHUNK_BYTES):
                    written += len(chunk)
                    if written > self.max_bytes:
                        raise AttachmentTooLarge(source_url, f"body exceeded {self.max_bytes} bytes")
                    sink.write(chunk)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise AttachmentTransferFailed(source_url, f"GET failed ({type(e).__name__}: {e})") from e
        return written
