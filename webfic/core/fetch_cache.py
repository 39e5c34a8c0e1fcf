import copy
from typing import Optional
from bs4 import BeautifulSoup
from yarl import URL

from ..models import log


class FetchCache:
    """Remembers the last fetched page, for sites that put several chapters on one page.

    Holds a single document keyed by URL path; asking for another path replaces it.
    Callers always get their own copy so normalizing one chapter cannot damage the
    page the next chapter is cut from.
    """

    def __init__(self):
        self.path: Optional[str] = None
        self.dom: Optional[BeautifulSoup] = None

    def in_cache(self, url: str) -> bool:
        return self.dom is not None and URL(url).path == self.path

    async def fetch(self, url: str, transport) -> BeautifulSoup:
        if not self.in_cache(url):
            self.dom = await transport.fetch(url)
            self.path = URL(url).path
        else:
            log.debug(f"Page cache hit for {url}")
        return copy.copy(self.dom)
