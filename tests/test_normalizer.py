import pytest
from unittest.mock import MagicMock
from bs4 import BeautifulSoup

from webfic.models import AcquisitionOptions, Chapter
from webfic.core.normalizer import ContentNormalizer
from webfic.utils import html as dom_utils
from webfic.utils.progress import StatusReporter
from conftest import StoryParser

BASE = "https://story.example.com/chapter-2"


def load(body, title="Chapter 2"):
    heading = f"<h2 class='title'>{title}</h2>" if title else ""
    dom = BeautifulSoup(f"<html><head><title>Page title</title></head><body>{heading}"
                        f"<div id='content'>{body}</div></body></html>", "lxml")
    dom_utils.set_base_tag(dom, BASE)
    return dom, dom.select_one("#content")


def make_chapter(title=None):
    return Chapter(source_url=BASE, title=title, sequence_index=1,
                   neighbors={"story.example.com/chapter-1", "story.example.com/chapter-3"})


def make_normalizer(reporter=None, **option_overrides):
    options = AcquisitionOptions(**option_overrides)
    return ContentNormalizer(StoryParser(options), options, reporter)


def test_removes_links_to_neighbouring_chapters():
    dom, content = load(
        "<p>Story text.</p>"
        "<a href='/chapter-1'>Previous</a> <a href='https://www.story.example.com/chapter-3/'>Next</a>"
        "<a href='https://elsewhere.example.org/'>Fan art</a>"
    )
    make_normalizer().normalize(make_chapter(), content, dom)
    hrefs = [a["href"] for a in content.find_all("a")]
    assert hrefs == ["https://elsewhere.example.org/"]

def test_keeps_navigation_links_when_asked():
    dom, content = load("<p>Story text.</p><a href='/chapter-1'>Previous</a>")
    make_normalizer(remove_next_and_previous_chapter_links=False).normalize(make_chapter(), content, dom)
    assert content.find("a", string="Previous") is not None

def test_inserts_title_and_fills_chapter_title():
    dom, content = load("<p>Story text.</p>")
    chapter = make_chapter()
    make_normalizer().normalize(chapter, content, dom)
    assert chapter.title == "Chapter 2"
    first = content.find(True)
    assert first.name == "h1" and first.get_text() == "Chapter 2"

def test_title_not_duplicated_when_content_starts_with_it():
    dom, content = load("<h3>Chapter 2</h3><p>Story text.</p>")
    make_normalizer().normalize(make_chapter("Chapter 2"), content, dom)
    headings = content.find_all(dom_utils.HEADING_TAGS)
    assert [h.name for h in headings] == ["h1"]
    assert headings[0].get_text() == "Chapter 2"

def test_discovered_title_is_kept():
    dom, content = load("<p>Story text.</p>")
    chapter = make_chapter("2. The Second One")
    make_normalizer().normalize(chapter, content, dom)
    assert chapter.title == "2. The Second One"

def test_document_title_used_when_page_has_no_chapter_title():
    dom, content = load("<p>Story text.</p>", title=None)
    chapter = make_chapter()
    make_normalizer().normalize(chapter, content, dom)
    assert chapter.title == "Page title"
    assert content.find("h1") is None

def test_removes_scripts_comments_and_junk():
    dom, content = load(
        "<p onclick='steal()'>Story <!-- ad slot --> text.</p>"
        "<script>track()</script><style>p {color: red}</style>"
        "<div class='sharedaddy'>Share this</div>"
        "<p class='MsoNormal' style='mso-line-height: 1'>Word<o:p></o:p></p>"
        "<a href='https://www.facebook.com/sharer/sharer.php?u=x'>Share</a>"
    )
    make_normalizer().normalize(make_chapter("Chapter 2"), content, dom)
    text = str(content)
    assert "<script" not in text and "<style" not in text
    assert "ad slot" not in text
    assert "Share this" not in text and "sharer" not in text
    assert "onclick" not in text
    assert "Mso" not in text and "o:p" not in text and "style=" not in text
    assert "Story" in text and "Word" in text

def test_decodes_cloudflare_emails():
    dom, content = load("<p>Mail <span class='__cf_email__' data-cfemail='422302206c21'>[email protected]</span></p>")
    make_normalizer().normalize(make_chapter("Chapter 2"), content, dom)
    assert "a@b.c" in content.get_text()

def test_structural_repair():
    dom, content = load(
        "<h3>Part one</h3><h5>Scene</h5>"
        "<span><div>block inside inline</div></span>"
        "<p><span>plain span</span> <font color='red'>red</font></p>"
        "<div><div></div></div>"
        "<p><a href='#note-1'>1</a> <a href='/chapter-2#note-2'>2</a></p>",
        title=None
    )
    make_normalizer().normalize(make_chapter("Part one"), content, dom)
    assert [h.name for h in content.find_all(dom_utils.HEADING_TAGS)] == ["h1", "h2"]
    assert content.find("span") is None
    assert content.find("font") is None
    assert content.find("div") is not None and content.find("div").get_text() == "block inside inline"
    assert [a["href"] for a in content.find_all("a")] == ["#note-1", "#note-2"]

def test_trailing_whitespace_removed():
    dom, content = load("<p>Story text.</p>\n  <br/><br/>  \n")
    make_normalizer().normalize(make_chapter("Chapter 2"), content, dom)
    assert str(content).endswith("</p></div>")

def test_whitespace_only_content_warns():
    reporter = MagicMock(spec=StatusReporter)
    dom, content = load("  <br/>  ", title=None)
    result = make_normalizer(reporter).normalize(make_chapter("Chapter 2"), content, dom)
    assert result is content
    reporter.warning.assert_called_once()

def test_reenter_cached_only_fixes_links():
    chapter = make_chapter("Chapter 2")
    content = dom_utils.parse_fragment(
        "<div><p>Cached.</p><a href='https://story.example.com/chapter-2#n1'>n</a>"
        "<a href='https://story.example.com/chapter-1'>Previous</a></div>"
    )
    make_normalizer().reenter_cached(chapter, content)
    hrefs = [a["href"] for a in content.find_all("a")]
    assert hrefs == ["#n1", "https://story.example.com/chapter-1"]
    assert content.find("h1") is None

def test_custom_step_runs_first():
    parser = StoryParser()
    parser.custom_content_step = MagicMock(side_effect=lambda chapter, content: content.append(
        dom_utils.new_tag("p", "added by site")))
    dom, content = load("<p>Story text.</p>")
    ContentNormalizer(parser).normalize(make_chapter("Chapter 2"), content, dom)
    parser.custom_content_step.assert_called_once()
    assert "added by site" in content.get_text()
