from typing import List

from .base import SiteParser
from .registry import ParserRegistry
from ..utils.html import get_base_url


class WordpressBaseParser(SiteParser):
    """Common layout of WordPress hosted translation sites."""
    content_selector = "div.entry-content, div.post-content, article .entry"
    chapter_link_selector = "div.entry-content a"
    title_selector = "h1.entry-title, h2.entry-title, .wp-block-post-title"

    async def discover_chapters(self, dom, transport, rate_limiter) -> List[dict]:
        return self.links_to_chapters(dom.select(self.chapter_link_selector), get_base_url(dom))

    def locate_content(self, dom):
        return dom.select_one(self.content_selector)

    def locate_chapter_title(self, dom):
        return dom.select_one(self.title_selector)

    def extract_title_impl(self, dom):
        return dom.select_one(self.title_selector)

    def chapter_link_container(self, link):
        # Navigation links usually sit alone in their own paragraph.
        parent = link.parent
        if parent is not None and parent.name == "p" and len(parent.find_all("a")) <= 3 \
                and len(parent.get_text(strip=True)) < 60:
            return parent
        return link


ParserRegistry.register("wordpress", WordpressBaseParser)
