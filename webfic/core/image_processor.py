import os
import io
import asyncio
import mimetypes
from urllib.parse import urlparse, urljoin
from bs4 import Tag
from typing import List, Dict, Optional, Tuple
from tqdm.asyncio import tqdm_asyncio
from PIL import Image as PillowImage, UnidentifiedImageError

from ..models import (
    log, MAX_IMAGE_DIMENSION, JPEG_QUALITY, ALLOWED_IMAGE_MIMES,
    ImageAsset, normalize_url_for_compare, sanitize_filename
)
from ..errors import FetchError
from .epub_structure import EpubStructure, EPUB_STRUCTURE

IMAGE_FETCH_CONCURRENCY = 4
STRIPPED_IMG_ATTRS = ['srcset', 'data-src', 'data-srcset', 'data-lazy-src', 'loading', 'decoding', 'sizes', 'style']


class ImageCollector:
    """Finds, downloads and dedupes the images used by chapters, and rewrites <img> tags.

    One collector serves a whole book: an image used by several chapters is fetched
    once and packaged once.
    """

    def __init__(self, transport, structure: EpubStructure = EPUB_STRUCTURE):
        self.transport = transport
        self.structure = structure
        self.assets: List[ImageAsset] = []
        self._by_url: Dict[str, Optional[ImageAsset]] = {}
        self._pending: Dict[str, str] = {}
        self._in_flight: Dict[str, asyncio.Future] = {}
        self._semaphore: Optional[asyncio.Semaphore] = None

    def reset(self) -> None:
        for task in self._in_flight.values():
            task.cancel()
        self.assets = []
        self._by_url = {}
        self._pending = {}
        self._in_flight = {}

    @staticmethod
    def optimize_and_get_details(url, headers, data):
        if not data:
            return None, None, None, "No Data"
        content_type = (headers or {}).get('Content-Type', '').split(';')[0].strip().lower()
        if not content_type or content_type == 'application/octet-stream':
            content_type = mimetypes.guess_type(urlparse(url).path)[0] or ''
        if content_type == 'image/svg+xml':
            return content_type, '.svg', data, None
        if len(data) < 12 * 1024:
            if content_type not in ALLOWED_IMAGE_MIMES:
                return None, None, None, f"Unsupported type '{content_type}'"
            ext = mimetypes.guess_extension(content_type) or '.img'
            return content_type, ext, data, None

        try:
            with PillowImage.open(io.BytesIO(data)) as img:
                img.load()
                if img.width < 20 or img.height < 20:
                    return None, None, None, "Tracking Pixel"

                if img.format == 'GIF' and getattr(img, "is_animated", False):
                    return 'image/gif', '.gif', data, None

                if img.width > MAX_IMAGE_DIMENSION or img.height > MAX_IMAGE_DIMENSION:
                    img.thumbnail((MAX_IMAGE_DIMENSION, MAX_IMAGE_DIMENSION), PillowImage.Resampling.LANCZOS)

                if img.format == 'PNG' and len(data) < 200 * 1024:
                    out_io = io.BytesIO()
                    img.save(out_io, format='PNG', optimize=True)
                    return 'image/png', '.png', out_io.getvalue(), None

                if img.mode in ('RGBA', 'LA') or (img.mode == 'P' and 'transparency' in img.info):
                    background = PillowImage.new("RGB", img.size, (255, 255, 255))
                    if img.mode != 'RGBA':
                        img = img.convert('RGBA')
                    background.paste(img, mask=img.split()[3])
                    img = background
                elif img.mode != 'RGB':
                    img = img.convert('RGB')

                out_io = io.BytesIO()
                img.save(out_io, format='JPEG', optimize=True, quality=JPEG_QUALITY, subsampling="4:2:0")
                return 'image/jpeg', '.jpg', out_io.getvalue(), None

        except (UnidentifiedImageError, OSError, ValueError) as e:
            return None, None, None, f"Optimization Error: {e}"

    @staticmethod
    def is_junk(url: str) -> bool:
        """Determines if an image URL is a known placeholder or tracking pixel."""
        if not url:
            return True
        if url.startswith("data:"):
            return True

        bad_keywords = [
            "spacer", "1x1", "transparent", "pixel.gif", "blank.gif",
            "placeholder", "loader", "lazy_placeholder", "grey-placeholder", "gray-placeholder",
        ]
        lower_url = url.lower()
        return any(k in lower_url for k in bad_keywords)

    @staticmethod
    def parse_srcset(srcset_str: str) -> list:
        if not srcset_str:
            return []
        candidates = []
        for p in srcset_str.split(','):
            p = p.strip()
            if not p:
                continue
            sub = p.split()
            width = 0
            if len(sub) > 1 and sub[1].endswith('w'):
                try:
                    width = int(sub[1][:-1])
                except ValueError:
                    pass
            candidates.append((width, sub[0]))

        candidates.sort(key=lambda x: x[0], reverse=True)
        return [c[1] for c in candidates]

    def _best_source(self, img_tag: Tag) -> Optional[str]:
        candidates = []
        for attr in ('data-src', 'data-lazy-src', 'src'):
            if img_tag.get(attr):
                candidates.append(img_tag[attr].strip())
        for attr in ('data-srcset', 'srcset'):
            candidates.extend(self.parse_srcset(img_tag.get(attr)))
        return next((c for c in candidates if not self.is_junk(c)), None)

    def preprocess_image_tags(self, content: Tag, base_url: str) -> Tag:
        """Resolve each <img> to one absolute source URL; drop placeholder-only images."""
        for pic in content.find_all('picture'):
            img = pic.find('img')
            if img:
                for source in pic.find_all('source'):
                    source.decompose()
                pic.replace_with(img)
            else:
                pic.decompose()

        for img_tag in content.find_all('img'):
            src = self._best_source(img_tag)
            if not src:
                img_tag.decompose()
                continue
            if src.startswith("//"):
                src = "https:" + src
            if not src.startswith(self.structure.relative_image_path):
                img_tag['src'] = urljoin(base_url, src)
            for attr in STRIPPED_IMG_ATTRS:
                if img_tag.has_attr(attr):
                    del img_tag[attr]
        return content

    def find_images_used_in_document(self, content: Tag) -> List[str]:
        """Queue images not yet known; returns the keys of every remote image the content uses."""
        used = []
        for img_tag in content.find_all('img', src=True):
            src = img_tag['src']
            if not src.startswith(('http://', 'https://')):
                continue
            key = normalize_url_for_compare(src)
            used.append(key)
            if key in self._by_url or key in self._in_flight or key in self._pending:
                continue
            self._pending[key] = src
        return used

    async def fetch_images(self, referer: Optional[str] = None, keys: Optional[List[str]] = None) -> None:
        """Start downloads for queued images, then wait for ``keys`` (default: all in flight)."""
        if self._semaphore is None:
            self._semaphore = asyncio.Semaphore(IMAGE_FETCH_CONCURRENCY)
        queued, self._pending = self._pending, {}
        for key, url in queued.items():
            self._in_flight[key] = asyncio.ensure_future(self._limited(key, url, referer))

        tasks = []
        for key in (list(self._in_flight) if keys is None else keys):
            task = self._in_flight.get(key)
            if task is not None and task not in tasks:
                tasks.append(task)
        if not tasks:
            return
        await tqdm_asyncio.gather(*tasks, desc="Fetching Images", unit="img", leave=False)

    async def _limited(self, key: str, url: str, referer: Optional[str]) -> None:
        try:
            async with self._semaphore:
                await self._fetch_image(url, referer)
        finally:
            self._in_flight.pop(key, None)

    async def _fetch_image(self, url: str, referer: Optional[str]) -> None:
        key = normalize_url_for_compare(url)
        if key in self._by_url:
            return
        try:
            data, headers = await self.transport.fetch_bytes(url, referer=referer)
        except FetchError as e:
            log.warning(f"Image fetch failed for {url}: {e}")
            self._by_url[key] = None
            return
        mime, ext, final_data, err = self.optimize_and_get_details(url, headers, data)
        if err or not final_data:
            log.debug(f"Skipping image {url}: {err}")
            self._by_url[key] = None
            return
        self._by_url[key] = self._add_asset(url, mime, ext, final_data)

    def _add_asset(self, url: str, mime: str, ext: str, data: bytes) -> ImageAsset:
        index = len(self.assets)
        base = sanitize_filename(os.path.splitext(os.path.basename(urlparse(url).path))[0], 40)
        filename = f"{self.structure.images_dir_rel}/{index:04d}_{base}{ext}"
        asset = ImageAsset(uid=f"img_{index:04d}", filename=filename, media_type=mime, content=data, original_url=url)
        self.assets.append(asset)
        return asset

    def asset_for(self, url: str) -> Optional[ImageAsset]:
        return self._by_url.get(normalize_url_for_compare(url))

    def replace_image_tags(self, content: Tag) -> Tag:
        """Point collected images at their packaged copy; failed ones keep the absolute URL."""
        for img_tag in content.find_all('img', src=True):
            asset = self.asset_for(img_tag['src'])
            if asset is None:
                continue
            img_tag['src'] = self.structure.relative_image_path + os.path.basename(asset.filename)
            img_tag['class'] = 'epub-image'
            if not img_tag.has_attr('alt'):
                img_tag['alt'] = ""
        return content

    async def collect(self, content: Tag, base_url: str) -> Tuple[Tag, int]:
        """find -> fetch -> replace for one chapter; returns the content and images found."""
        known = len(self._pending)
        used = self.find_images_used_in_document(content)
        found = len(self._pending) - known
        await self.fetch_images(referer=base_url, keys=used)
        self.replace_image_tags(content)
        return content, found
