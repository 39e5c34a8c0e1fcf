import trafilatura
from bs4 import BeautifulSoup, Tag
from typing import List, Optional

from .base import SiteParser
from ..models import log, AcquisitionOptions, SiteProfile
from ..utils.html import get_base_url, remove_elements

SMART_SELECTORS = ['article', '[role="main"]', '.chapter-content', '#chapter-content', '.entry-content',
                   '.post-content', '.main-content', '#main', '#content', '.article-body', '.storycontent']


class GenericParser(SiteParser):
    """Parser for sites without dedicated rules, driven by an optional YAML site profile."""

    def __init__(self, options: Optional[AcquisitionOptions] = None, profile: Optional[SiteProfile] = None):
        super().__init__(options, profile)
        if profile:
            if profile.max_simultaneous_fetch_size:
                self.max_simultaneous_fetch_size = int(profile.max_simultaneous_fetch_size)
            if profile.minimum_throttle is not None:
                self.minimum_throttle = int(profile.minimum_throttle)
            self.use_fetch_cache = profile.shared_page

    async def discover_chapters(self, dom, transport, rate_limiter) -> List[dict]:
        base_url = get_base_url(dom)
        if self.profile and self.profile.chapter_selector:
            chapters = self.links_to_chapters(dom.select(self.profile.chapter_selector), base_url)
            if chapters:
                return chapters
            log.warning(f"Chapter selector '{self.profile.chapter_selector}' matched nothing; treating page as one chapter")
        return self.single_chapter_story(base_url, dom)

    def preprocess_raw_dom(self, dom):
        if self.profile and self.profile.remove_selectors:
            for selector in self.profile.remove_selectors:
                remove_elements(dom.select(selector))

    def locate_content(self, dom) -> Optional[Tag]:
        if self.profile and self.profile.content_selector:
            found = dom.select_one(self.profile.content_selector)
            if found:
                return found
            log.warning(f"Profile selector '{self.profile.content_selector}' matched nothing")
        for selector in SMART_SELECTORS:
            found = dom.select_one(selector)
            if found and len(found.get_text(strip=True)) > 200:
                log.debug(f"Found content using selector: '{selector}'")
                return found
        log.info("Selectors failed, falling back to Trafilatura extraction.")
        extracted = trafilatura.extract(str(dom), include_images=True, include_tables=True, output_format='html')
        if not extracted:
            return None
        fragment = BeautifulSoup(extracted, 'html.parser')
        body = fragment.find('body') or fragment
        container = fragment.new_tag('div')
        for child in list(body.contents):
            container.append(child.extract())
        return container

    def locate_chapter_title(self, dom):
        if self.profile and self.profile.title_selector:
            return dom.select_one(self.profile.title_selector)
        return None

    def _metadata(self, dom):
        try:
            return trafilatura.extract_metadata(str(dom))
        except (ValueError, TypeError) as e:
            log.debug(f"Trafilatura metadata failed: {e}")
            return None

    def extract_title_impl(self, dom):
        metadata = self._metadata(dom)
        if metadata and metadata.title:
            return metadata.title
        return self.extract_title_default(dom)

    def extract_author(self, dom):
        metadata = self._metadata(dom)
        if metadata and metadata.author:
            return metadata.author
        return super().extract_author(dom)
