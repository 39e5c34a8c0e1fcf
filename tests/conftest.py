import asyncio
import pytest
from typing import Dict, List, Optional
from bs4 import BeautifulSoup

from webfic.models import AcquisitionOptions
from webfic.errors import HttpStatusError
from webfic.plugins.base import SiteParser
from webfic.utils.html import set_base_tag


class FakeTransport:
    """In-memory stand-in for FetchTransport.

    ``pages`` maps URL to HTML, or to an exception instance to raise. ``delays`` adds
    a real ``asyncio.sleep`` before answering (pages and images), for ordering tests.
    ``redirects`` maps a requested URL to the final URL stamped as the page base.
    """

    def __init__(self, pages: Optional[Dict[str, object]] = None, images: Optional[Dict[str, bytes]] = None,
                 delays: Optional[Dict[str, float]] = None, redirects: Optional[Dict[str, str]] = None):
        self.pages = pages or {}
        self.images = images or {}
        self.delays = delays or {}
        self.redirects = redirects or {}
        self.calls: List[str] = []
        self.requests: List[tuple] = []
        self.image_calls: List[str] = []
        self.events: List[tuple] = []

    async def fetch(self, url, method="GET", data=None):
        self.calls.append(url)
        self.requests.append((method, url, data))
        self.events.append(("start", url))
        if url in self.delays:
            await asyncio.sleep(self.delays[url])
        self.events.append(("end", url))
        page = self.pages.get(url)
        if page is None:
            raise HttpStatusError(404, url)
        if isinstance(page, Exception):
            raise page
        dom = BeautifulSoup(page, "lxml")
        set_base_tag(dom, self.redirects.get(url, url))
        return dom

    async def fetch_bytes(self, url, referer=None, extra_headers=None):
        self.image_calls.append(url)
        if url in self.delays:
            await asyncio.sleep(self.delays[url])
        data = self.images.get(url)
        if data is None:
            raise HttpStatusError(404, url)
        return data, {"Content-Type": "image/png"}


class StoryParser(SiteParser):
    """Minimal site: chapter links in ``ul.toc``, text in ``#content``, title in ``h2.title``."""

    async def discover_chapters(self, dom, transport, rate_limiter):
        return self.links_to_chapters(dom.select("ul.toc a"), "https://story.example.com/")

    def locate_content(self, dom):
        return dom.select_one("#content")

    def locate_chapter_title(self, dom):
        return dom.select_one("h2.title")

    def information_nodes(self, dom):
        return dom.select("div.summary")


def chapter_page(title: str, body: str) -> str:
    return f"<html><head><title>{title} | Story</title></head><body><h2 class='title'>{title}</h2>" \
           f"<div id='content'>{body}</div></body></html>"


@pytest.fixture
def options():
    return AcquisitionOptions(override_minimum_delay=True, manual_delay_ms=0)


@pytest.fixture
def parser(options):
    return StoryParser(options)


@pytest.fixture
def story_urls():
    return [f"https://story.example.com/chapter-{i}" for i in range(1, 4)]


@pytest.fixture
def story_pages(story_urls):
    return {url: chapter_page(f"Chapter {i}", f"<p>Text of chapter {i}.</p>")
            for i, url in enumerate(story_urls, start=1)}
