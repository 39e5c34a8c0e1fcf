from typing import List
from urllib.parse import urlparse, parse_qs, urlencode, urlunparse

from .base import SiteParser
from .registry import ParserRegistry
from ..utils.html import get_base_url


@ParserRegistry.register("empirenovel.com")
class EmpirenovelParser(SiteParser):
    """Table of contents is paged with ``?page=N`` and lists newest chapters first."""

    async def discover_chapters(self, dom, transport, rate_limiter) -> List[dict]:
        first_page = self.extract_partial_chapter_list(dom)
        chapters = await self.chapters_from_all_toc_pages(
            first_page, self.extract_partial_chapter_list, self.urls_of_toc_pages(dom),
            transport, rate_limiter
        )
        return list(reversed(chapters))

    def urls_of_toc_pages(self, dom) -> List[str]:
        base_url = get_base_url(dom) or ""
        links = dom.select(".pagination a[href]")
        indices = []
        for link in links:
            page = parse_qs(urlparse(link["href"]).query).get("page")
            if page and page[0].isdigit():
                indices.append(int(page[0]))
        if not indices:
            return []
        template = urlparse(base_url)
        query = parse_qs(template.query)
        urls = []
        for i in range(2, max(indices) + 1):
            query["page"] = [str(i)]
            urls.append(urlunparse(template._replace(query=urlencode(query, doseq=True))))
        return urls

    def extract_partial_chapter_list(self, dom) -> List[dict]:
        for small in dom.select("a.chapter_link .small"):
            small.decompose()
        return self.links_to_chapters(dom.select("a.chapter_link"), get_base_url(dom))

    def locate_content(self, dom):
        return dom.select_one("#read-novel")

    def extract_title_impl(self, dom):
        return dom.select_one("h1:not(.show_title)")

    def information_nodes(self, dom):
        return dom.select("dl")
