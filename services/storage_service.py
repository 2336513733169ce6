"""
Object storage for user media (stickers and entry images).

Objects live under MEDIA_DIR and are served by the /media static mount, so
a stored object's public URL is ``MEDIA_URL_PREFIX + <key>``. Deletes are
tolerant of objects that are already gone.
"""
import logging
import shutil
from pathlib import Path
from typing import List, Optional, Union
from urllib.parse import unquote, urlparse

from config.settings import settings, MEDIA_DIR

logger = logging.getLogger(__name__)


def stickers_prefix(user_id: str) -> str:
    return f"stickers/{user_id}/"


def entries_prefix(user_id: str) -> str:
    return f"entries/{user_id}/"


class LocalObjectStore:
    """
    Object store backed by a local directory.
    """

    def __init__(self, root: Union[str, Path], url_prefix: str = "/media/"):
        self.root = Path(root).resolve()
        self.url_prefix = url_prefix if url_prefix.endswith("/") else url_prefix + "/"

    def _path_for_key(self, key: str) -> Path:
        # Keys must stay inside the storage root
        path = (self.root / key.lstrip("/")).resolve()
        if path != self.root and self.root not in path.parents:
            raise ValueError(f"Object key escapes storage root: {key}")
        return path

    def url_for(self, key: str) -> str:
        return f"{self.url_prefix}{key.lstrip('/')}"

    def is_managed_url(self, url: Optional[str]) -> bool:
        """True if the URL points at an object this store serves."""
        return self.key_from_url(url) is not None

    def key_from_url(self, url: Optional[str]) -> Optional[str]:
        if not url:
            return None
        prefix_path = urlparse(self.url_prefix).path or self.url_prefix
        url_path = urlparse(url).path
        if not url_path.startswith(prefix_path):
            return None
        # An absolute prefix must also match scheme and host
        if urlparse(self.url_prefix).netloc and urlparse(url).netloc != urlparse(self.url_prefix).netloc:
            return None
        key = unquote(url_path[len(prefix_path):])
        return key or None

    async def put(self, key: str, content: bytes) -> str:
        """Store bytes under ``key`` and return the public URL."""
        path = self._path_for_key(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)
        return self.url_for(key)

    async def exists(self, key: str) -> bool:
        return self._path_for_key(key).is_file()

    async def list_urls(self, prefix: str) -> List[str]:
        """Public URLs of every object under ``prefix``, sorted by key."""
        path = self._path_for_key(prefix)
        if not path.is_dir():
            return []
        keys = sorted(p.relative_to(self.root).as_posix() for p in path.rglob("*") if p.is_file())
        return [self.url_for(key) for key in keys]

    async def delete_by_prefix(self, prefix: str) -> int:
        """
        Delete every object whose key starts with ``prefix``.

        Returns:
            Number of objects deleted (0 if the prefix does not exist)
        """
        path = self._path_for_key(prefix)
        if not path.exists():
            logger.info(f"Storage prefix {prefix} is empty; nothing to delete")
            return 0
        if path.is_file():
            path.unlink()
            return 1

        count = sum(1 for p in path.rglob("*") if p.is_file())
        shutil.rmtree(path)
        logger.info(f"Deleted {count} objects under {prefix}")
        return count

    async def delete_by_url(self, url: str) -> bool:
        """
        Delete the object a managed URL points to.

        Returns:
            True if an object was removed, False if it was already absent

        Raises:
            ValueError: the URL is not served by this store
        """
        key = self.key_from_url(url)
        if key is None:
            raise ValueError(f"Not a managed storage URL: {url}")
        path = self._path_for_key(key)
        if not path.is_file():
            return False
        path.unlink()
        return True


def get_object_store() -> LocalObjectStore:
    """FastAPI dependency: the media object store."""
    return LocalObjectStore(MEDIA_DIR, settings.media_url_prefix)
