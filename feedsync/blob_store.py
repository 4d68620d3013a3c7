"""
Object storage for avatars, post images and story photos.

Paths are namespaced by entity kind and owner id and carry a timestamp plus
a random token so concurrent uploads never collide.
"""
import asyncio
import secrets
import time
from typing import Dict, List, Optional, Sequence, Tuple
from urllib.parse import quote

import requests
from requests import Session

from .config import HTTP_TIMEOUT
from .debug_log import get_logger

logger = get_logger("blob_store")

AVATARS = "avatars"
POSTS = "posts"
STORIES = "stories"


class BlobError(Exception):
    pass


def blob_path(kind: str, owner_id: str, filename: str, millis: Optional[int] = None, token: Optional[str] = None) -> str:
    """``{kind}/{owner_id}/{millis}-{token}.{ext}``"""
    if not owner_id:
        raise BlobError("owner id is required for blob paths")
    ext = filename.rsplit(".", 1)[-1].lower() if "." in filename else "bin"
    millis = int(time.time() * 1000) if millis is None else millis
    token = token or secrets.token_hex(4)
    return f"{kind}/{owner_id}/{millis}-{token}.{ext}"


class BlobStore:
    async def upload(self, path: str, data: bytes, content_type: str = "application/octet-stream") -> str: ...
    async def delete(self, url: str) -> None: ...

    async def upload_many(
        self, kind: str, owner_id: str, files: Sequence[Tuple[str, bytes]]
    ) -> List[str]:
        """Upload ``(filename, data)`` pairs concurrently; urls keep input order."""
        paths = [blob_path(kind, owner_id, name) for name, _ in files]
        return list(await asyncio.gather(*(self.upload(p, data) for p, (_, data) in zip(paths, files))))


class MemoryBlobStore(BlobStore):
    def __init__(self, base_url: str = "memory://blobs"):
        self.base_url = base_url
        self.blobs: Dict[str, bytes] = {}

    async def upload(self, path: str, data: bytes, content_type: str = "application/octet-stream") -> str:
        await asyncio.sleep(0)
        self.blobs[path] = bytes(data)
        return f"{self.base_url}/{path}"

    async def delete(self, url: str) -> None:
        await asyncio.sleep(0)
        path = url[len(self.base_url) + 1:] if url.startswith(self.base_url + "/") else url
        if self.blobs.pop(path, None) is None:
            raise BlobError(f"no blob at {url}")


class RestBlobStore(BlobStore):
    """Blob storage behind ``{base_url}/blobs/{path}``."""

    def __init__(self, base_url: str, session: Optional[Session] = None, timeout: float = HTTP_TIMEOUT):
        self.base_url = base_url.rstrip("/")
        self.session: Session = session or requests.Session()
        self.timeout = timeout

    def _url(self, path: str) -> str:
        return f"{self.base_url}/blobs/{quote(path.lstrip('/'))}"

    def _put(self, path: str, data: bytes, content_type: str) -> str:
        resp = self.session.put(self._url(path), data=data, headers={"Content-Type": content_type}, timeout=self.timeout)
        resp.raise_for_status()
        body = resp.json() if resp.content else {}
        return body.get("url") or self._url(path)

    def _delete(self, url: str) -> None:
        target = url if url.startswith("http") else self._url(url)
        resp = self.session.delete(target, timeout=self.timeout)
        resp.raise_for_status()

    async def upload(self, path: str, data: bytes, content_type: str = "application/octet-stream") -> str:
        try:
            url = await asyncio.to_thread(self._put, path, data, content_type)
        except requests.RequestException as e:
            logger.exception("upload of %s failed", path)
            raise BlobError(f"upload failed: {e}") from e
        logger.debug("uploaded %d bytes to %s", len(data), path)
        return url

    async def delete(self, url: str) -> None:
        try:
            await asyncio.to_thread(self._delete, url)
        except requests.RequestException as e:
            logger.exception("delete of %s failed", url)
            raise BlobError(f"delete failed: {e}") from e
