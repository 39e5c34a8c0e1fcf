import os
import json
import asyncio
import pytest
from unittest.mock import patch

from webfic.core.chapter_cache import MemoryChapterCache, FileChapterCache
from webfic.core.fetch_cache import FetchCache
from webfic.errors import CacheReadError, CacheWriteError
from conftest import FakeTransport

URL = "https://story.example.com/chapter-1"

# --- FetchCache ---

@pytest.mark.asyncio
async def test_fetch_cache_reuses_page_for_same_path(story_pages, story_urls):
    transport = FakeTransport(story_pages)
    cache = FetchCache()

    first = await cache.fetch(story_urls[0], transport)
    second = await cache.fetch(story_urls[0] + "#part-2", transport)
    assert transport.calls == [story_urls[0]]
    assert cache.in_cache(story_urls[0] + "?page=2")

    first.select_one("#content").decompose()
    assert second.select_one("#content") is not None
    third = await cache.fetch(story_urls[0], transport)
    assert third.select_one("#content") is not None

@pytest.mark.asyncio
async def test_fetch_cache_replaces_entry_for_new_path(story_pages, story_urls):
    transport = FakeTransport(story_pages)
    cache = FetchCache()
    await cache.fetch(story_urls[0], transport)
    await cache.fetch(story_urls[1], transport)
    await cache.fetch(story_urls[0], transport)
    assert transport.calls == [story_urls[0], story_urls[1], story_urls[0]]

# --- MemoryChapterCache ---

@pytest.mark.asyncio
async def test_memory_cache_content_and_error_are_exclusive():
    cache = MemoryChapterCache()
    await cache.set(URL, "<div>text</div>")
    assert await cache.get(URL) == "<div>text</div>"
    assert await cache.get_error(URL) is None

    await cache.set_error(URL, "HTTP 404")
    assert await cache.get(URL) is None
    assert await cache.get_error(URL) == "HTTP 404"

    await cache.set(URL, "<div>again</div>")
    assert await cache.get_error(URL) is None

@pytest.mark.asyncio
async def test_memory_cache_expires_entries():
    cache = MemoryChapterCache(max_age_days=0)
    await cache.set(URL, "<div>old</div>")
    assert await cache.get(URL) is None
    assert URL not in cache.entries

@pytest.mark.asyncio
async def test_memory_cache_clear():
    cache = MemoryChapterCache()
    await cache.set(URL, "<div/>")
    await cache.set_error(URL + "2", "boom")
    assert await cache.clear_old_entries() == 0
    assert await cache.clear_all() == 2
    assert await cache.get(URL) is None

# --- FileChapterCache ---

@pytest.mark.asyncio
async def test_file_cache_round_trip(tmp_path):
    cache = FileChapterCache(str(tmp_path / "cache"))
    assert await cache.get(URL) is None
    await cache.set(URL, "<div>text</div>")
    assert await cache.get(URL) == "<div>text</div>"

    await cache.set_error(URL, "timed out")
    assert await cache.get(URL) is None
    assert await cache.get_error(URL) == "timed out"

    await cache.remove(URL)
    assert await cache.get_error(URL) is None

@pytest.mark.asyncio
async def test_file_cache_drops_other_versions(tmp_path):
    cache = FileChapterCache(str(tmp_path))
    with patch("webfic.core.chapter_cache.CACHE_VERSION", "0.9"):
        await cache.set(URL, "<div>old format</div>")
    assert os.path.exists(cache._path(URL))
    assert await cache.get(URL) is None
    assert not os.path.exists(cache._path(URL))

@pytest.mark.asyncio
async def test_file_cache_corrupt_entry_raises_read_error(tmp_path):
    cache = FileChapterCache(str(tmp_path))
    with open(cache._path(URL), "w") as f:
        f.write("{not json")
    with pytest.raises(CacheReadError):
        await cache.get(URL)

@pytest.mark.asyncio
async def test_file_cache_clear_old_entries(tmp_path):
    cache = FileChapterCache(str(tmp_path))
    await cache.set(URL, "<div>a</div>")
    await cache.set(URL + "-2", "<div>b</div>")
    path = cache._path(URL)
    with open(path) as f:
        entry = json.load(f)
    entry["timestamp"] = 0
    with open(path, "w") as f:
        json.dump(entry, f)

    assert await cache.clear_old_entries() == 1
    assert await cache.get(URL + "-2") == "<div>b</div>"
    assert await cache.clear_all() == 1

@pytest.mark.asyncio
async def test_file_cache_overlapping_writes_to_one_url(tmp_path):
    cache = FileChapterCache(str(tmp_path))
    await asyncio.gather(*[cache.set(URL, f"<p>v{i}</p>") for i in range(5)],
                         cache.set_error(URL, "HTTP 503"))
    assert [n for n in os.listdir(tmp_path) if n.endswith(".tmp")] == []
    html, error = await cache.get(URL), await cache.get_error(URL)
    assert (html is None) != (error is None)

@pytest.mark.asyncio
async def test_file_cache_failed_write_leaves_no_temp_file(tmp_path):
    cache = FileChapterCache(str(tmp_path))
    with patch("json.dump", side_effect=OSError("disk full")):
        with pytest.raises(CacheWriteError):
            await cache.set(URL, "<p>text</p>")
    assert os.listdir(tmp_path) == []
