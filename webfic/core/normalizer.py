from typing import Optional
from urllib.parse import urljoin
from bs4 import BeautifulSoup, Tag

from ..models import log, AcquisitionOptions, Chapter
from ..utils import html as dom_utils
from ..utils.progress import StatusReporter, NullStatusReporter


class ContentNormalizer:
    """Turns a page's content element into clean, portable chapter markup.

    The steps run in a fixed order and each one is a no-op when there is
    nothing to do:

    1. site specific custom step
    2. decode Cloudflare protected emails
    3. drop next/previous chapter links (only ones pointing at a neighbor)
    4. removal rules (scripts, comments, WordPress and Word junk, share widgets)
    5. insert the chapter title unless the content already starts with it
    6. structural repair (nesting, heading levels, links, styles, empty nodes)
    7. trim trailing whitespace
    8. warn when nothing visible is left
    """

    def __init__(self, parser, options: Optional[AcquisitionOptions] = None, reporter: Optional[StatusReporter] = None):
        self.parser = parser
        self.options = options or AcquisitionOptions()
        self.reporter = reporter or NullStatusReporter()

    def normalize(self, chapter: Chapter, content: Tag, dom: Optional[BeautifulSoup] = None) -> Tag:
        base_url = (dom_utils.get_base_url(dom) if dom is not None else None) or chapter.source_url

        self.parser.custom_content_step(chapter, content)
        dom_utils.decode_cloudflare_protected_emails(content)
        if self.options.remove_next_and_previous_chapter_links:
            self.remove_next_and_previous_chapter_links(chapter, content, base_url)
        self.remove_unwanted_elements(content)
        self.add_title_to_content(chapter, content, dom)
        self.repair_structure(content, base_url, chapter.source_url)
        dom_utils.remove_trailing_white_space(content)
        self.check_visible_content(chapter, content)
        return content

    def reenter_cached(self, chapter: Chapter, content: Tag) -> Tag:
        """Cached content is already normalized; only redo the link fix-up."""
        dom_utils.make_hyperlinks_relative(chapter.source_url, content)
        return content

    def remove_next_and_previous_chapter_links(self, chapter: Chapter, content: Tag, base_url: str) -> None:
        if not chapter.neighbors:
            return
        to_remove = []
        for link in content.find_all('a', href=True):
            target = self.parser.normalize_url(urljoin(base_url, link['href'].strip()))
            if target in chapter.neighbors:
                to_remove.append(self.parser.chapter_link_container(link))
        if to_remove:
            log.debug(f"Removing {len(to_remove)} chapter navigation links from {chapter.source_url}")
        dom_utils.remove_elements(to_remove)

    def remove_unwanted_elements(self, content: Tag) -> None:
        dom_utils.remove_scriptable_elements(content)
        dom_utils.remove_comments(content)
        dom_utils.remove_unwanted_wordpress_elements(content)
        dom_utils.remove_microsoft_word_crap_elements(content)
        dom_utils.remove_share_link_elements(content)
        dom_utils.remove_leading_white_space(content)

    def add_title_to_content(self, chapter: Chapter, content: Tag, dom: Optional[BeautifulSoup]) -> None:
        title = self.parser.locate_chapter_title(dom) if dom is not None else None
        if isinstance(title, Tag):
            title = title.get_text()
        title = title.strip() if title else None
        if not title:
            if chapter.title is None and dom is not None and dom.title:
                chapter.title = dom.title.get_text().strip() or None
            return
        if chapter.title is None:
            chapter.title = title
        if not self.title_already_present(title, content):
            content.insert(0, dom_utils.new_tag('h1', title))

    @staticmethod
    def title_already_present(title: str, content: Tag) -> bool:
        existing = content.find(dom_utils.HEADING_TAGS)
        return existing is not None and existing.get_text().strip() == title.strip()

    def repair_structure(self, content: Tag, base_url: str, page_url: Optional[str] = None) -> None:
        dom_utils.fix_block_tags_nested_in_inline_tags(content)
        dom_utils.remove_unused_heading_levels(content)
        dom_utils.make_hyperlinks_relative(base_url, content, page_url)
        dom_utils.set_style_to_default(content)
        dom_utils.remove_empty_attributes(content)
        dom_utils.remove_spans_with_no_attributes(content)
        dom_utils.remove_empty_div_elements(content)

    def check_visible_content(self, chapter: Chapter, content: Tag) -> None:
        if dom_utils.is_element_white_space(content):
            message = f"Chapter {chapter.source_url} has no visible content."
            log.warning(message)
            self.reporter.warning(message)
