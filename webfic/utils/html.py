"""DOM surgery helpers shared by the normalizer, plugins and packaging.

All helpers mutate BeautifulSoup trees in place and tolerate the case where
there is nothing to do.
"""
import re
from typing import Iterable, Optional
from urllib.parse import urljoin, urldefrag
from bs4 import BeautifulSoup, Tag, NavigableString, Comment

from ..models import CONTENT_CLASS_NAME

INLINE_TAGS = {'a', 'b', 'big', 'cite', 'em', 'font', 'i', 'small', 'span', 'strike', 's', 'strong', 'sub', 'sup', 'u'}
BLOCK_TAGS = {'address', 'article', 'aside', 'blockquote', 'div', 'dl', 'figure', 'footer', 'form', 'h1', 'h2', 'h3',
              'h4', 'h5', 'h6', 'header', 'hr', 'li', 'ol', 'p', 'pre', 'section', 'table', 'ul'}
HEADING_TAGS = ['h1', 'h2', 'h3', 'h4', 'h5', 'h6']
SCRIPTABLE_TAGS = ['script', 'style', 'noscript', 'iframe', 'object', 'embed', 'applet', 'input', 'button', 'form', 'select', 'textarea']
VISIBLE_EMPTY_TAGS = ['img', 'image', 'svg', 'hr', 'video', 'audio']
STYLE_ATTRS = ['style', 'align', 'valign', 'bgcolor', 'color', 'face', 'size', 'width', 'height', 'border']
WORDPRESS_JUNK = [
    'div.sharedaddy', 'div.wpcnt', 'ul.post-categories', 'div.mistape_caption', 'div.wpulike',
    'div.wp-next-post-navi', '.ezoic-adpicker-ad', '.ezoic-ad', 'ins.adsbygoogle', 'div.jp-relatedposts',
    'div.code-block', '#jp-post-flair', 'div.wp-block-buttons', 'div.patreon-widget',
]
SHARE_LINK_JUNK = [
    'div.sharepost', 'div.share-buttons', 'div.addtoany_share_save_container', 'div.social-share',
    'a[href*="facebook.com/sharer"]', 'a[href*="twitter.com/intent/tweet"]', 'a[href*="x.com/intent/tweet"]',
    'a[href*="pinterest.com/pin/create"]', 'a[href*="reddit.com/submit"]',
]
PLAIN_LETTERS = "abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ"

_factory = BeautifulSoup("", "html.parser")


def new_tag(name: str, text: Optional[str] = None, **attrs) -> Tag:
    tag = _factory.new_tag(name, attrs=attrs)
    if text is not None:
        tag.string = text
    return tag


def remove_elements(elements: Iterable[Tag]) -> None:
    for element in list(elements):
        if element is not None and element.parent is not None:
            element.decompose()


def get_base_url(dom: BeautifulSoup) -> Optional[str]:
    base = dom.find('base', href=True)
    return base['href'] if base else None


def set_base_tag(dom: BeautifulSoup, url: str) -> None:
    base = dom.find('base', href=True)
    if base:
        base['href'] = urljoin(url, base['href'])
        return
    head = dom.find('head')
    if head is None:
        head = dom.new_tag('head')
        html = dom.find('html')
        if html is None:
            dom.insert(0, head)
        else:
            html.insert(0, head)
    head.insert(0, dom.new_tag('base', href=url))


def make_empty_doc_for_content(base_url: Optional[str] = None):
    """Fresh document holding an empty content <div>; returns (dom, content)."""
    dom = BeautifulSoup("<html><head><title></title></head><body></body></html>", 'lxml')
    if base_url:
        set_base_tag(dom, base_url)
    content = dom.new_tag('div', attrs={'class': CONTENT_CLASS_NAME})
    dom.body.append(content)
    return dom, content


def parse_fragment(html: str) -> Optional[Tag]:
    """First element of an HTML fragment, detached in its own tree."""
    soup = BeautifulSoup(html, 'html.parser')
    return next((c for c in soup.contents if isinstance(c, Tag)), None)


# --- Email protection ---

def decode_email(encoded: str) -> str:
    key = int(encoded[:2], 16)
    return ''.join(chr(int(encoded[i:i + 2], 16) ^ key) for i in range(2, len(encoded) - 1, 2))


def decode_cloudflare_protected_emails(content: Tag) -> None:
    for element in content.select('[data-cfemail]'):
        try:
            element.replace_with(decode_email(element['data-cfemail']))
        except ValueError:
            continue
    for link in content.select('a[href*="/cdn-cgi/l/email-protection#"]'):
        encoded = link['href'].split('#', 1)[1]
        try:
            link['href'] = 'mailto:' + decode_email(encoded)
        except ValueError:
            continue


def decipher(element: Tag, cipher: str) -> None:
    """Substitution decode: each letter of ``cipher`` maps to the same position in a-zA-Z."""
    table = str.maketrans(cipher, PLAIN_LETTERS[:len(cipher)])
    for text in list(element.find_all(string=True)):
        if isinstance(text, Comment):
            continue
        text.replace_with(str(text).translate(table))


# --- Removal rules ---

def remove_scriptable_elements(content: Tag) -> None:
    remove_elements(content.find_all(SCRIPTABLE_TAGS))
    for tag in content.find_all(True):
        for attr in [a for a in tag.attrs if a.lower().startswith('on')]:
            del tag[attr]
        href = tag.get('href')
        if isinstance(href, str) and href.strip().lower().startswith('javascript:'):
            del tag['href']


def remove_comments(content: Tag) -> None:
    for comment in content.find_all(string=lambda text: isinstance(text, Comment)):
        comment.extract()


def remove_unwanted_wordpress_elements(content: Tag) -> None:
    remove_elements(content.select(', '.join(WORDPRESS_JUNK)))


def remove_microsoft_word_crap_elements(content: Tag) -> None:
    remove_elements(t for t in content.find_all(True) if t.name and t.name.startswith('o:'))
    for tag in content.find_all(class_=re.compile(r'^Mso')):
        classes = [c for c in tag.get('class', []) if not c.startswith('Mso')]
        if classes:
            tag['class'] = classes
        else:
            del tag['class']


def remove_share_link_elements(content: Tag) -> None:
    remove_elements(content.select(', '.join(SHARE_LINK_JUNK)))


def _is_blank(node) -> bool:
    if isinstance(node, Comment):
        return True
    if isinstance(node, NavigableString):
        return not node.strip()
    return isinstance(node, Tag) and node.name == 'br'


def remove_leading_white_space(content: Tag) -> None:
    while content.contents and _is_blank(content.contents[0]):
        content.contents[0].extract()


def remove_trailing_white_space(content: Tag) -> None:
    node = content
    while isinstance(node, Tag):
        while node.contents and _is_blank(node.contents[-1]):
            node.contents[-1].extract()
        if not node.contents:
            break
        last = node.contents[-1]
        if isinstance(last, NavigableString):
            last.replace_with(str(last).rstrip())
            break
        node = last


# --- Structural repair ---

def fix_block_tags_nested_in_inline_tags(content: Tag) -> None:
    """Unwrap inline elements that contain block elements (invalid in XHTML)."""
    for inline in reversed(content.find_all(list(INLINE_TAGS))):
        if inline.parent is None:
            continue
        if inline.find(list(BLOCK_TAGS)) is not None:
            inline.unwrap()


def remove_unused_heading_levels(content: Tag) -> None:
    """Renumber headings so the levels in use are consecutive starting at h1."""
    used = sorted({int(h.name[1]) for h in content.find_all(HEADING_TAGS)})
    mapping = {level: i + 1 for i, level in enumerate(used)}
    if all(level == new for level, new in mapping.items()):
        return
    for heading in content.find_all(HEADING_TAGS):
        heading.name = f"h{mapping[int(heading.name[1])]}"


def make_hyperlinks_relative(base_url: Optional[str], content: Tag, page_url: Optional[str] = None) -> None:
    """Links back into the same page become bare fragments.

    Every other href is made absolute against the document's base URL, which can
    differ from the page URL (a site ``<base>`` tag or a redirect).
    """
    if not base_url:
        return
    page, _ = urldefrag(page_url or base_url)
    for link in content.find_all('a', href=True):
        href = link['href'].strip()
        if not href or href.startswith('#'):
            continue
        absolute = urljoin(base_url, href)
        target, fragment = urldefrag(absolute)
        if fragment and target == page:
            link['href'] = f"#{fragment}"
        else:
            link['href'] = absolute


def set_style_to_default(content: Tag) -> None:
    for tag in [content] + content.find_all(True):
        for attr in STYLE_ATTRS:
            if tag.name in ('img', 'td', 'th', 'col') and attr in ('width', 'height'):
                continue
            if attr in tag.attrs:
                del tag[attr]
    for font in content.find_all('font'):
        font.unwrap()


def remove_empty_attributes(content: Tag) -> None:
    for tag in content.find_all(True):
        for attr in [a for a, v in tag.attrs.items() if a != 'alt' and (v == '' or v == [])]:
            del tag[attr]


def remove_spans_with_no_attributes(content: Tag) -> None:
    for span in content.find_all('span'):
        if not span.attrs:
            span.unwrap()


def remove_empty_div_elements(content: Tag) -> None:
    for div in reversed(content.find_all('div')):
        if div.parent is None or div.has_attr('id'):
            continue
        if not div.get_text(strip=True) and div.find(VISIBLE_EMPTY_TAGS) is None:
            div.decompose()


def is_element_white_space(content: Tag) -> bool:
    return not content.get_text(strip=True) and content.find(VISIBLE_EMPTY_TAGS) is None
