import zipfile
import pytest
from bs4 import BeautifulSoup

from webfic.models import AcquisitionOptions, ChapterStatus, EpubItem, EpubMetaInfo, ImageAsset
from webfic.core.chapter_set import ChapterSet
from webfic.core.epub_structure import EPUB_STRUCTURE, OEBPS_STRUCTURE
from webfic.core.links import HyperlinkResolver
from webfic.core.supplier import EpubItemSupplier
from webfic.core.writer import EpubWriter
from webfic.utils.html import parse_fragment
from conftest import StoryParser

STORY = "https://story.example.com"


def item(index, title, url, body):
    return EpubItem(index=index, title=title, source_url=url, content=parse_fragment(f"<div>{body}</div>"))

# --- HyperlinkResolver ---

def test_item_file_names():
    it = item(3, "Chapter 2: Into the Woods", f"{STORY}/chapter-2", "")
    assert it.file_name(EPUB_STRUCTURE) == "text/0003_Chapter_2_Into_the_Woods.xhtml"
    assert it.zip_href(OEBPS_STRUCTURE) == "OEBPS/Text/0003_Chapter_2_Into_the_Woods.xhtml"

def test_links_point_at_first_item_for_a_page():
    items = [
        item(0, "One", f"{STORY}/chapter-1", "<p>start</p>"),
        item(1, "One b", f"{STORY}/chapter-1", "<p>second half</p>"),
        item(2, "Two", f"{STORY}/chapter-2",
             "<a href='https://www.story.example.com/chapter-1/#scene-2'>back</a>"
             "<a href='chapter-1'>relative</a>"
             "<a href='/about'>about</a>"
             "<a href='#local'>local</a>"
             "<a href='../text/0000_One.xhtml'>done</a>"),
    ]
    HyperlinkResolver(EPUB_STRUCTURE).resolve(items)
    hrefs = [a["href"] for a in items[2].hyperlinks()]
    assert hrefs == [
        "../text/0000_One.xhtml#scene-2",
        "../text/0000_One.xhtml",
        f"{STORY}/about",
        "#local",
        "../text/0000_One.xhtml",
    ]

def test_resolver_uses_structure_paths():
    items = [
        item(0, "One", f"{STORY}/chapter-1", ""),
        item(1, "Two", f"{STORY}/chapter-2", f"<a href='{STORY}/chapter-1'>back</a>"),
    ]
    HyperlinkResolver(OEBPS_STRUCTURE).resolve(items)
    assert items[1].hyperlinks()[0]["href"] == "../Text/0000_One.xhtml"

# --- EpubItemSupplier ---

def make_book(statuses):
    chapters = ChapterSet.from_discovered(
        [{"source_url": f"{STORY}/chapter-{i}", "title": f"Chapter {i}"} for i in range(1, len(statuses) + 1)]
    )
    for chapter, status in zip(chapters, statuses):
        chapter.status = status
        if status == ChapterStatus.DOWNLOADED:
            chapter.content = parse_fragment(
                f"<div><h1>{chapter.title}</h1><p>Body</p><a href='{STORY}/chapter-1'>first</a></div>")
        elif status == ChapterStatus.ERROR:
            chapter.error = RuntimeError("HTTP 503")
    return chapters


def toc_dom():
    return BeautifulSoup(
        "<html><head><title>The Story</title></head><body>"
        "<div class='summary'><p>A tale.</p><img src='cover.jpg'/></div></body></html>", "lxml")


def test_supplier_builds_items_in_order():
    chapters = make_book([ChapterStatus.DOWNLOADED, ChapterStatus.ERROR, ChapterStatus.DOWNLOADED, ChapterStatus.PENDING])
    supplier = EpubItemSupplier(StoryParser(), chapters, options=AcquisitionOptions(add_information_page=False))

    items = supplier.build()

    assert [i.index for i in items] == [0, 1, 2]
    assert [i.kind for i in items] == ["chapter", "placeholder", "chapter"]
    assert [i.title for i in items] == ["Chapter 1", "Chapter 2", "Chapter 3"]
    assert "HTTP 503" in items[1].content.get_text()
    assert items[2].hyperlinks()[0]["href"] == "../text/0000_Chapter_1.xhtml"

    statuses = [c.status for c in chapters]
    assert statuses == [ChapterStatus.IN_BOOK, ChapterStatus.ERROR, ChapterStatus.IN_BOOK, ChapterStatus.PENDING]
    assert all(c.content is None and c.raw_dom is None for c in chapters)

def test_supplier_skips_excluded_chapters():
    chapters = make_book([ChapterStatus.DOWNLOADED, ChapterStatus.DOWNLOADED])
    chapters.set_includeable(f"{STORY}/chapter-1", False)
    items = EpubItemSupplier(StoryParser(), chapters, options=AcquisitionOptions(add_information_page=False)).build()
    assert [i.source_url for i in items] == [f"{STORY}/chapter-2"]

def test_information_page_added_first():
    chapters = make_book([ChapterStatus.DOWNLOADED])
    supplier = EpubItemSupplier(StoryParser(), chapters, toc_dom=toc_dom(), toc_url=f"{STORY}/toc")
    items = supplier.build()
    info = items[0]
    assert info.kind == "information"
    assert info.title == "Information"
    assert "A tale." in info.content.get_text()
    assert info.content.find("img") is None
    assert info.content.find("a")["href"] == f"{STORY}/toc"
    assert items[1].index == 1

def test_no_information_page_when_updating_a_book():
    chapters = make_book([ChapterStatus.IN_BOOK, ChapterStatus.DOWNLOADED])
    items = EpubItemSupplier(StoryParser(), chapters, toc_dom=toc_dom(), toc_url=f"{STORY}/toc").build()
    assert [i.kind for i in items] == ["chapter"]

def test_supplier_exposes_images():
    class Collector:
        assets = [ImageAsset("img_0000", "images/0000_a.png", "image/png", b"png", "https://cdn/a.png")]
    supplier = EpubItemSupplier(StoryParser(), make_book([]), images=Collector())
    assert supplier.images == Collector.assets
    assert EpubItemSupplier(StoryParser(), make_book([])).images == []

# --- EpubWriter ---

@pytest.mark.parametrize("structure", [EPUB_STRUCTURE, OEBPS_STRUCTURE])
def test_writer_packs_items_and_images(tmp_path, structure):
    items = [
        item(0, "Chapter 1", f"{STORY}/chapter-1", "<h1>Chapter 1</h1><p>Hello.</p>"),
        item(1, "Chapter 2", f"{STORY}/chapter-2",
             f"<h1>Chapter 2</h1><img src='{structure.relative_image_path}0000_a.png' alt=''/>"),
    ]
    images = [ImageAsset("img_0000", f"{structure.images_dir_rel}/0000_a.png", "image/png", b"\x89PNG", "https://cdn/a.png")]
    meta = EpubMetaInfo(uuid=f"{STORY}/toc", title="The Story", author="Someone")
    output = str(tmp_path / "story.epub")

    EpubWriter.write(items, meta, output, images, structure)

    with zipfile.ZipFile(output) as z:
        names = z.namelist()
        assert "mimetype" in names
        assert items[0].zip_href(structure) in names
        assert items[1].zip_href(structure) in names
        assert f"{structure.content_dir}/{structure.stylesheet}" in names
        assert f"{structure.images_dir}/0000_a.png" in names
        chapter_one = z.read(items[0].zip_href(structure)).decode("utf-8")
    assert "Hello." in chapter_one
    assert f"{structure.relative_style_path}stylesheet.css" in chapter_one
