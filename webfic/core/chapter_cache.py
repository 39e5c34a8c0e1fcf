import os
import json
import time
import asyncio
import hashlib
import tempfile
from abc import ABC, abstractmethod
from typing import Dict, Optional

from ..models import log, CACHE_VERSION, MAX_CACHE_AGE_DAYS
from ..errors import CacheReadError, CacheWriteError

SECONDS_PER_DAY = 60 * 60 * 24


class ChapterCache(ABC):
    """Normalized chapter HTML (or the error that stopped it), keyed by source URL.

    A key holds either content or an error, never both.
    """

    @abstractmethod
    async def get(self, url: str) -> Optional[str]: ...

    @abstractmethod
    async def set(self, url: str, html: str) -> None: ...

    @abstractmethod
    async def get_error(self, url: str) -> Optional[str]: ...

    @abstractmethod
    async def set_error(self, url: str, message: str) -> None: ...

    @abstractmethod
    async def remove(self, url: str) -> None: ...

    @abstractmethod
    async def clear_old_entries(self) -> int: ...

    @abstractmethod
    async def clear_all(self) -> int: ...


def _make_entry(html: Optional[str] = None, error: Optional[str] = None) -> dict:
    return {"html": html, "error": error, "timestamp": time.time(), "version": CACHE_VERSION}


def _is_stale(entry: dict, max_age_days: float) -> bool:
    age_days = (time.time() - entry.get("timestamp", 0)) / SECONDS_PER_DAY
    return age_days >= max_age_days or entry.get("version") != CACHE_VERSION


class MemoryChapterCache(ChapterCache):
    """Session-only cache."""

    def __init__(self, max_age_days: float = MAX_CACHE_AGE_DAYS):
        self.max_age_days = max_age_days
        self.entries: Dict[str, dict] = {}

    def _lookup(self, url: str) -> Optional[dict]:
        entry = self.entries.get(url)
        if entry is not None and _is_stale(entry, self.max_age_days):
            del self.entries[url]
            return None
        return entry

    async def get(self, url):
        entry = self._lookup(url)
        return entry.get("html") if entry else None

    async def set(self, url, html):
        self.entries[url] = _make_entry(html=html)

    async def get_error(self, url):
        entry = self._lookup(url)
        return entry.get("error") if entry else None

    async def set_error(self, url, message):
        self.entries[url] = _make_entry(error=message)

    async def remove(self, url):
        self.entries.pop(url, None)

    async def clear_old_entries(self):
        stale = [url for url, entry in self.entries.items() if _is_stale(entry, self.max_age_days)]
        for url in stale:
            del self.entries[url]
        return len(stale)

    async def clear_all(self):
        count = len(self.entries)
        self.entries.clear()
        return count


class FileChapterCache(ChapterCache):
    """One JSON file per chapter under ``directory``; disk IO runs in the default executor."""

    def __init__(self, directory: str, max_age_days: float = MAX_CACHE_AGE_DAYS):
        self.directory = os.path.expanduser(directory)
        self.max_age_days = max_age_days

    def _path(self, url: str) -> str:
        digest = hashlib.sha1(url.encode('utf-8')).hexdigest()
        return os.path.join(self.directory, f"{digest}.json")

    async def _run(self, fn, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, fn, *args)

    def _read(self, url: str) -> Optional[dict]:
        path = self._path(url)
        if not os.path.exists(path):
            return None
        try:
            with open(path, 'r', encoding='utf-8') as f:
                entry = json.load(f)
        except (OSError, ValueError) as e:
            raise CacheReadError(f"Unreadable cache entry for {url}: {e}") from e
        if entry.get("url") != url:
            return None
        if _is_stale(entry, self.max_age_days):
            self._delete(path)
            return None
        return entry

    def _write(self, url: str, entry: dict) -> None:
        entry["url"] = url
        path = self._path(url)
        tmp_path = None
        try:
            os.makedirs(self.directory, exist_ok=True)
            # unique per write; a content write and an error write for one URL may overlap
            fd, tmp_path = tempfile.mkstemp(dir=self.directory, suffix=".tmp")
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(entry, f)
            os.replace(tmp_path, path)
        except OSError as e:
            if tmp_path:
                self._delete(tmp_path)
            raise CacheWriteError(f"Could not write cache entry for {url}: {e}") from e

    @staticmethod
    def _delete(path: str) -> bool:
        try:
            os.remove(path)
            return True
        except FileNotFoundError:
            return False

    def _entry_paths(self):
        if not os.path.isdir(self.directory):
            return []
        return [os.path.join(self.directory, n) for n in os.listdir(self.directory) if n.endswith('.json')]

    def _clear(self, only_stale: bool) -> int:
        removed = 0
        for path in self._entry_paths():
            if only_stale:
                try:
                    with open(path, 'r', encoding='utf-8') as f:
                        entry = json.load(f)
                    if not _is_stale(entry, self.max_age_days):
                        continue
                except (OSError, ValueError):
                    pass
            removed += self._delete(path)
        return removed

    async def get(self, url):
        entry = await self._run(self._read, url)
        return entry.get("html") if entry else None

    async def set(self, url, html):
        await self._run(self._write, url, _make_entry(html=html))

    async def get_error(self, url):
        entry = await self._run(self._read, url)
        return entry.get("error") if entry else None

    async def set_error(self, url, message):
        await self._run(self._write, url, _make_entry(error=message))

    async def remove(self, url):
        await self._run(self._delete, self._path(url))

    async def clear_old_entries(self):
        removed = await self._run(self._clear, True)
        if removed:
            log.info(f"Removed {removed} expired chapter cache entries")
        return removed

    async def clear_all(self):
        return await self._run(self._clear, False)
