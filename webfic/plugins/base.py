from abc import ABC, abstractmethod
from typing import Callable, List, Optional, Union
from urllib.parse import urljoin
from bs4 import BeautifulSoup, Tag

from ..models import (
    log, AUTHOR_NOTE_CLASS_NAME, MINIMUM_THROTTLE_MS, AcquisitionOptions, Chapter, EpubMetaInfo,
    SiteProfile, normalize_url_for_compare, sanitize_filename
)
from ..utils.html import get_base_url, remove_elements


class SiteParser(ABC):
    """Site-specific extraction rules.

    The pipeline only talks to this interface; concrete parsers are found through
    ``ParserRegistry``. ``max_simultaneous_fetch_size`` and ``minimum_throttle``
    may be overridden per site.
    """
    max_simultaneous_fetch_size: int = 1
    minimum_throttle: int = MINIMUM_THROTTLE_MS
    use_fetch_cache: bool = False

    def __init__(self, options: Optional[AcquisitionOptions] = None, profile: Optional[SiteProfile] = None):
        self.options = options or AcquisitionOptions()
        self.profile = profile

    # --- Chapter discovery ---

    @abstractmethod
    async def discover_chapters(self, dom: BeautifulSoup, transport, rate_limiter) -> List[dict]:
        """Ordered ``[{"source_url": ..., "title": ...}]`` for the table of contents page."""

    def normalize_url(self, url: str) -> str:
        return normalize_url_for_compare(url)

    def single_chapter_story(self, base_url: str, dom: BeautifulSoup) -> List[dict]:
        return [{"source_url": base_url, "title": self.extract_title(dom)}]

    def links_to_chapters(self, links: List[Tag], base_url: Optional[str]) -> List[dict]:
        chapters = []
        for link in links:
            href = link.get('href')
            if not href:
                continue
            chapters.append({
                "source_url": urljoin(base_url or "", href.strip()),
                "title": link.get_text(" ", strip=True),
            })
        return chapters

    async def chapters_from_all_toc_pages(self, chapters: List[dict], extract_partial_chapter_list: Callable,
                                          urls_of_toc_pages: List[str], transport, rate_limiter) -> List[dict]:
        for url in urls_of_toc_pages:
            await rate_limiter.wait()
            dom = await transport.fetch(url)
            partial = extract_partial_chapter_list(dom)
            log.info(f"Table of contents page {url}: {len(partial)} chapters")
            chapters = chapters + partial
        return chapters

    async def walk_toc_pages(self, dom: BeautifulSoup, chapters_from_dom: Callable, next_toc_page_url: Callable,
                             transport, rate_limiter) -> List[dict]:
        chapters = chapters_from_dom(dom)
        url = next_toc_page_url(dom, chapters, chapters)
        while url is not None:
            await rate_limiter.wait()
            dom = await transport.fetch(url)
            partial = chapters_from_dom(dom)
            chapters = chapters + partial
            url = next_toc_page_url(dom, chapters, partial)
        return chapters

    # --- Chapter content ---

    async def fetch_chapter(self, url: str, transport, fetch_cache) -> BeautifulSoup:
        if self.use_fetch_cache:
            return await fetch_cache.fetch(url, transport)
        return await transport.fetch(url)

    def preprocess_raw_dom(self, dom: BeautifulSoup) -> None:
        """Hook: adjust the fetched page before the content element is located."""

    def remove_unused_elements_to_reduce_memory(self, dom: BeautifulSoup) -> None:
        remove_elements(dom.find_all(['select', 'iframe']))

    @abstractmethod
    def locate_content(self, dom: BeautifulSoup) -> Optional[Tag]:
        pass

    def locate_chapter_title(self, dom: BeautifulSoup) -> Union[Tag, str, None]:
        return None

    def custom_content_step(self, chapter: Chapter, content: Tag) -> None:
        """Hook: arbitrary site specific surgery on the content element."""

    def chapter_link_container(self, link: Tag) -> Tag:
        """Element to delete when ``link`` is a next/previous chapter link."""
        return link

    def is_custom_error(self, html: str) -> bool:
        return False

    def chapter_to_epub_items(self, chapter: Chapter, content: Tag, index: int) -> List[tuple]:
        """``(title, content)`` pairs; one per chapter unless a site splits pages."""
        return [(chapter.title, content)]

    # --- Author notes ---

    def tag_author_notes(self, elements) -> None:
        for element in elements:
            classes = element.get('class', [])
            if AUTHOR_NOTE_CLASS_NAME not in classes:
                element['class'] = classes + [AUTHOR_NOTE_CLASS_NAME]

    def tag_author_notes_by_selector(self, element: Tag, selector: str) -> None:
        notes = element.select(selector)
        if self.options.remove_author_notes:
            remove_elements(notes)
        else:
            self.tag_author_notes(notes)

    # --- Book metadata ---

    def information_nodes(self, dom: BeautifulSoup) -> Optional[List[Tag]]:
        """Elements for the information page; ``None`` means no information page."""
        return None

    @staticmethod
    def extract_title_default(dom: BeautifulSoup) -> str:
        og = dom.select_one("meta[property='og:title']")
        if og and og.get('content'):
            return og['content']
        return dom.title.get_text() if dom.title else ""

    def extract_title_impl(self, dom: BeautifulSoup) -> Union[Tag, str, None]:
        return self.extract_title_default(dom)

    def extract_title(self, dom: BeautifulSoup) -> str:
        title = self.extract_title_impl(dom)
        if title is None:
            title = self.extract_title_default(dom)
        if isinstance(title, Tag):
            title = title.get_text()
        return title.strip()

    def extract_author(self, dom: BeautifulSoup) -> str:
        return self.options.default_author

    def extract_language(self, dom: BeautifulSoup) -> str:
        locale = dom.select_one("meta[property='og:locale']")
        if locale and locale.get('content'):
            return locale['content']
        html = dom.find('html')
        return (html.get('lang') if html else None) or "en"

    def get_epub_meta_info(self, dom: BeautifulSoup, url: Optional[str] = None) -> EpubMetaInfo:
        meta = EpubMetaInfo(uuid=url or get_base_url(dom) or "")

        def safe_extract(fn, default=""):
            try:
                return fn()
            except (AttributeError, KeyError, TypeError, ValueError) as e:
                log.debug(f"Metadata extraction failed: {e}")
                return default

        meta.title = safe_extract(lambda: self.extract_title(dom))
        meta.author = safe_extract(lambda: self.extract_author(dom).strip(), self.options.default_author)
        meta.language = safe_extract(lambda: self.extract_language(dom), "en")
        meta.file_name = sanitize_filename(meta.title, 100) if meta.title else "web"
        return meta
