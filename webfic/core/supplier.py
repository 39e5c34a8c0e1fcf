import copy
from typing import List, Optional
from bs4 import BeautifulSoup

from ..models import log, AcquisitionOptions, Chapter, ChapterStatus, EpubItem, ImageAsset
from ..utils.html import make_empty_doc_for_content, new_tag, remove_elements
from .chapter_set import ChapterSet
from .epub_structure import EpubStructure
from .links import HyperlinkResolver


class EpubItemSupplier:
    """Turns the acquired chapters into the ordered list of XHTML items for the writer.

    Downloaded chapters become one or more items (the parser decides), failed ones a
    placeholder page. Chapters that are not includeable, or were never fetched, are
    left out. Packaged chapters move to IN_BOOK and drop their DOM.
    """

    def __init__(
        self,
        parser,
        chapters: ChapterSet,
        images=None,
        options: Optional[AcquisitionOptions] = None,
        toc_dom: Optional[BeautifulSoup] = None,
        toc_url: Optional[str] = None,
        title: Optional[str] = None,
    ):
        self.parser = parser
        self.chapters = chapters
        self.image_collector = images
        self.options = options or AcquisitionOptions()
        self.structure = EpubStructure.get(self.options.epub_structure)
        self.toc_dom = toc_dom
        self.toc_url = toc_url
        self.title = title
        self.resolver = HyperlinkResolver(self.structure, parser.normalize_url)

    @property
    def images(self) -> List[ImageAsset]:
        return self.image_collector.assets if self.image_collector is not None else []

    def is_library_update(self) -> bool:
        return any(c.status == ChapterStatus.IN_BOOK for c in self.chapters)

    def build(self) -> List[EpubItem]:
        items: List[EpubItem] = []
        if self.options.add_information_page and not self.is_library_update():
            info = self.information_page(len(items))
            if info is not None:
                items.append(info)

        skipped = 0
        for chapter in self.chapters.includeable():
            if chapter.status == ChapterStatus.ERROR:
                items.append(self.placeholder(chapter, len(items)))
            elif chapter.status == ChapterStatus.DOWNLOADED and chapter.content is not None:
                items.extend(self.chapter_items(chapter, len(items)))
            elif chapter.status != ChapterStatus.IN_BOOK:
                skipped += 1
        if skipped:
            log.info(f"{skipped} chapters were not fetched and are left out of the book")

        self.resolver.resolve(items)
        return items

    def chapter_items(self, chapter: Chapter, index: int) -> List[EpubItem]:
        items = []
        for title, content in self.parser.chapter_to_epub_items(chapter, chapter.content, index):
            items.append(EpubItem(
                index=index + len(items),
                title=title or chapter.title or f"Chapter {chapter.sequence_index + 1}",
                source_url=chapter.source_url,
                content=content,
            ))
        chapter.advance(ChapterStatus.IN_BOOK)
        chapter.raw_dom = None
        chapter.content = None
        return items

    def placeholder(self, chapter: Chapter, index: int) -> EpubItem:
        title = chapter.title or chapter.source_url
        _, content = make_empty_doc_for_content(chapter.source_url)
        content.append(new_tag('h1', title))
        content.append(new_tag('p', f"Could not fetch chapter at {chapter.source_url}"))
        content.append(new_tag('p', f"Error: {chapter.error}"))
        return EpubItem(index=index, title=title, source_url=chapter.source_url, content=content, kind="placeholder")

    def information_page(self, index: int) -> Optional[EpubItem]:
        if self.toc_dom is None:
            return None
        nodes = self.parser.information_nodes(self.toc_dom)
        if not nodes:
            return None
        title = self.title or self.parser.extract_title(self.toc_dom)
        _, content = make_empty_doc_for_content(self.toc_url)
        content.append(new_tag('h1', title))
        if self.toc_url:
            source = new_tag('p', "Table of Contents URL: ")
            source.append(new_tag('a', self.toc_url, href=self.toc_url))
            content.append(source)
        for node in nodes:
            node = copy.copy(node)
            remove_elements(node.find_all('img'))
            content.append(node)
        return EpubItem(index=index, title="Information", source_url=None, content=content, kind="information")
