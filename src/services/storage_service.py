"""
Media storage - persist generated blobs and read them back

Blobs are written under MEDIA_ROOT and served by the app at MEDIA_BASE_URL.
Remote URLs (upstream CDN links) are fetched over HTTP.
"""

import asyncio
import uuid
from datetime import datetime, UTC
from pathlib import Path

import aiohttp
from loguru import logger

from config.config import MEDIA_ROOT, MEDIA_BASE_URL, UPSTREAM_TIMEOUT_SECONDS


class StorageError(Exception):
    """Blob could not be stored or fetched"""


class MediaStorage:
    """Local-disk media store"""

    def __init__(self, root: Path = MEDIA_ROOT, base_url: str = MEDIA_BASE_URL):
        self.root = Path(root)
        self.base_url = base_url.rstrip("/")

    def _write(self, relative: Path, data: bytes) -> None:
        path = self.root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)

    async def save_blob(self, data: bytes, extension: str, folder: str = "generated") -> str:
        """
        Store blob and return its durable URL

        Args:
            data: File content
            extension: File extension without dot (mp4, png, mp3)
            folder: Sub-folder grouping (videos, images, audio)
        """
        if not data:
            raise StorageError("Refusing to store empty blob")

        day = datetime.now(UTC).strftime("%Y%m%d")
        relative = Path(folder) / day / f"{uuid.uuid4().hex}.{extension.lstrip('.')}"
        await asyncio.to_thread(self._write, relative, data)

        url = f"{self.base_url}/{relative.as_posix()}"
        logger.debug(f"Stored {len(data)} bytes at {url}")
        return url

    def _local_path(self, url: str) -> Path:
        relative = url[len(self.base_url):].lstrip("/")
        path = (self.root / relative).resolve()
        if self.root.resolve() not in path.parents:
            raise StorageError(f"Path escapes media root: {url}")
        return path

    def is_own_url(self, url: str) -> bool:
        """True for URLs this store served (and that stay inside the media root)"""
        if not url or not url.startswith(self.base_url + "/"):
            return False
        try:
            self._local_path(url)
        except StorageError:
            return False
        return True

    async def fetch_blob(self, url: str) -> bytes:
        """Read blob by URL (own media from disk, anything else over HTTP)"""
        if url.startswith(self.base_url + "/"):
            path = self._local_path(url)
            if not path.exists():
                raise StorageError(f"Media not found: {url}")
            return await asyncio.to_thread(path.read_bytes)

        timeout = aiohttp.ClientTimeout(total=UPSTREAM_TIMEOUT_SECONDS)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.get(url) as response:
                    if response.status != 200:
                        raise StorageError(f"Fetch failed ({response.status}): {url[:80]}")
                    return await response.read()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise StorageError(f"Fetch failed ({type(e).__name__}): {url[:80]}") from e


# Singleton
_storage: MediaStorage | None = None


def get_storage() -> MediaStorage:
    global _storage
    if _storage is None:
        _storage = MediaStorage()
    return _storage
