import os
import re
import enum
import logging
import aiohttp
from dataclasses import dataclass, field
from typing import List, Dict, Optional, Set, Any
from urllib.parse import urlsplit
from bs4 import BeautifulSoup, Tag

# --- Constants ---
REQUEST_TIMEOUT = aiohttp.ClientTimeout(total=45)
IMAGE_TIMEOUT = aiohttp.ClientTimeout(total=20)
MAX_RETRIES = 5
IMG_MAX_RETRIES = 1
RETRY_DELAY = 2.0
IMG_RETRY_DELAY = 1.5
MINIMUM_THROTTLE_MS = 500
ALLOWED_IMAGE_MIMES = {'image/jpeg', 'image/png', 'image/gif', 'image/webp', 'image/svg+xml'}
CONTENT_CLASS_NAME = "webficContent"
AUTHOR_NOTE_CLASS_NAME = "webfic-author-note"

# Image Optimization Settings
MAX_IMAGE_DIMENSION = 1000
JPEG_QUALITY = 65

# Chapter cache
CACHE_VERSION = "1.0"
MAX_CACHE_AGE_DAYS = 30

# --- Logging ---
_LOGLEVEL = os.getenv("LOGLEVEL", "INFO").upper()
logging.basicConfig(level=getattr(logging, _LOGLEVEL, logging.INFO),
                    format='%(asctime)s - %(levelname)s - %(message)s')
log = logging.getLogger(__name__)

# --- Data Structures ---

class ChapterStatus(enum.Enum):
    PENDING = "pending"
    SLEEPING = "sleeping"
    DOWNLOADING = "downloading"
    DOWNLOADED = "downloaded"
    ERROR = "error"
    IN_BOOK = "in_book"

# DOWNLOADED and ERROR are alternative terminal states of one fetch.
_STATUS_RANK = {
    ChapterStatus.PENDING: 0,
    ChapterStatus.SLEEPING: 1,
    ChapterStatus.DOWNLOADING: 2,
    ChapterStatus.DOWNLOADED: 3,
    ChapterStatus.ERROR: 3,
    ChapterStatus.IN_BOOK: 4,
}

TERMINAL_STATUSES = {ChapterStatus.DOWNLOADED, ChapterStatus.ERROR, ChapterStatus.IN_BOOK}

@dataclass
class AcquisitionOptions:
    """Configuration passed from the CLI to the acquisition pipeline."""
    skip_failing_chapters: bool = False
    manual_delay_ms: Optional[Any] = None
    override_minimum_delay: bool = False
    remove_next_and_previous_chapter_links: bool = True
    remove_author_notes: bool = False
    add_information_page: bool = True
    chapters_page_in_chapter_list: bool = False
    no_images: bool = False
    use_cache: bool = True
    epub_structure: str = "EPUB"
    default_author: str = "<unknown>"
    site_password: Optional[str] = None

@dataclass
class SiteProfile:
    name: str
    domain_patterns: List[str]
    parser_alias: Optional[str] = None
    content_selector: Optional[str] = None
    chapter_selector: Optional[str] = None
    title_selector: Optional[str] = None
    remove_selectors: List[str] = field(default_factory=list)
    headers: Dict[str, str] = field(default_factory=dict)
    max_simultaneous_fetch_size: Optional[int] = None
    minimum_throttle: Optional[int] = None
    shared_page: bool = False

@dataclass
class Chapter:
    source_url: str
    title: Optional[str] = None
    sequence_index: int = 0
    status: ChapterStatus = ChapterStatus.PENDING
    is_includeable: bool = True
    raw_dom: Optional[BeautifulSoup] = None
    content: Optional[Tag] = None
    error: Optional[Exception] = None
    neighbors: Set[str] = field(default_factory=set)
    is_cached_content: bool = False

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def advance(self, status: ChapterStatus) -> None:
        """Move to ``status``; status never goes backwards (see ChapterSet.retry)."""
        if status == self.status:
            return
        if _STATUS_RANK[status] <= _STATUS_RANK[self.status]:
            raise ValueError(f"Illegal status change {self.status.name} -> {status.name} for {self.source_url}")
        self.status = status

@dataclass
class ImageAsset:
    uid: str
    filename: str
    media_type: str
    content: bytes
    original_url: str

@dataclass
class EpubMetaInfo:
    uuid: str
    title: str = ""
    author: str = "<unknown>"
    language: str = "en"
    file_name: str = "web"
    description: str = ""

# --- Helper Functions ---

def normalize_url_for_compare(url: str) -> str:
    """Canonical form used to decide if two chapter URLs are the same page.

    Scheme, ``www.``, fragment and trailing slash are dropped; the query is kept
    because many sites put the chapter number there.
    """
    if not url or not isinstance(url, str):
        return ""
    parts = urlsplit(url.strip())
    host = parts.netloc.lower()
    if host.startswith("www."):
        host = host[4:]
    path = parts.path.rstrip("/")
    normalized = f"{host}{path}"
    if parts.query:
        normalized += f"?{parts.query}"
    return normalized

def urls_match(url1: str, url2: str) -> bool:
    if not url1 or not url2:
        return False
    return normalize_url_for_compare(url1) == normalize_url_for_compare(url2)

def is_url(url: str) -> bool:
    if not url or not isinstance(url, str):
        return False
    parts = urlsplit(url)
    return parts.scheme in ("http", "https") and bool(parts.netloc)

def sanitize_filename(filename, max_length=150):
    if not filename: return "untitled"
    filename = re.sub(r'[\x00-\x1f]', '', filename)
    sanitized = re.sub(r'[<>:"/\\|?*#%&{}$!\'@+`=]', '', filename)
    sanitized = re.sub(r'\s+', '_', sanitized).strip('_')
    return sanitized[:max_length] or "untitled"

def parse_chapter_spec(spec: str) -> Optional[List[int]]:
    """'1,3-5' -> [1, 3, 4, 5]; 1-based chapter numbers."""
    if not spec: return None
    numbers = set()
    for part in spec.split(','):
        part = part.strip()
        if not part: continue
        if '-' in part:
            try:
                start, end = part.split('-')
                start, end = int(start), int(end)
                if start > end: start, end = end, start
                numbers.update(range(start, end + 1))
            except ValueError: continue
        else:
            try:
                numbers.add(int(part))
            except ValueError: continue
    if not numbers: return None
    return sorted(n for n in numbers if n > 0)

@dataclass
class EpubItem:
    """One XHTML file of the book: a chapter (or part of one), the information page or a placeholder."""
    index: int
    title: str
    source_url: Optional[str]
    content: Tag
    kind: str = "chapter"

    def hyperlinks(self) -> List[Tag]:
        return self.content.find_all('a', href=True)

    def file_name(self, structure) -> str:
        """Path relative to the content folder, e.g. ``text/0003_Chapter_2.xhtml``."""
        return f"{structure.text_dir_rel}/{self.index:04d}_{sanitize_filename(self.title or self.kind, 60)}.xhtml"

    def zip_href(self, structure) -> str:
        return f"{structure.content_dir}/{self.file_name(structure)}"
