import os
import sys
import signal
import asyncio
import argparse
from urllib.parse import urlparse
from typing import Dict, Optional
from dotenv import load_dotenv

from webfic.models import log, AcquisitionOptions, parse_chapter_spec, sanitize_filename
from webfic.errors import WebficError, AcquisitionAborted, ConfigurationError, NoChaptersError
from webfic.core.profiles import ProfileManager
from webfic.core.session import get_session, load_cookie_file, FetchTransport
from webfic.core.chapter_set import ChapterSet
from webfic.core.chapter_cache import FileChapterCache
from webfic.core.rate_limit import RateLimiter
from webfic.core.controller import AcquisitionController
from webfic.core.image_processor import ImageCollector
from webfic.core.supplier import EpubItemSupplier
from webfic.core.epub_structure import EpubStructure
from webfic.core.writer import EpubWriter
from webfic.plugins.registry import ParserRegistry
from webfic.utils.progress import LoggingStatusReporter, TqdmStatusReporter

# Load environment variables from .env file
load_dotenv()

DEFAULT_CACHE_DIR = "~/.cache/webfic"


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Download web fiction into an EPUB")
    parser.add_argument("url", help="Table of contents URL of the story")
    parser.add_argument("-o", "--output", help="Output filename")
    parser.add_argument("--skip-failing", action="store_true", help="Keep going when a chapter fails")
    parser.add_argument("--delay", help="Manual delay between chapter fetches, in milliseconds")
    parser.add_argument("--override-min-delay", action="store_true", help="Allow --delay below the site's minimum")
    parser.add_argument("--keep-nav-links", action="store_true", help="Keep next/previous chapter links")
    parser.add_argument("--remove-author-notes", action="store_true")
    parser.add_argument("--no-images", action="store_true")
    parser.add_argument("--no-cache", action="store_true", help="Do not read or write the chapter cache")
    parser.add_argument("--clear-cache", action="store_true", help="Empty the chapter cache before fetching")
    parser.add_argument("--no-info-page", action="store_true", help="Do not add the information page")
    parser.add_argument("--structure", choices=["EPUB", "OEBPS"], default="EPUB", help="Folder layout inside the EPUB")
    parser.add_argument("--include-toc-page", action="store_true", help="Add the table of contents page as a chapter")
    parser.add_argument("--chapters", help="Chapters to include (e.g. '1,3-5')")
    parser.add_argument("--author", help="Author to use when the site does not name one")
    parser.add_argument("--password", help="Site password for password protected chapters")
    parser.add_argument("--css", help="Custom CSS file to inject")
    parser.add_argument("--cookie-file", help="Netscape cookie file for gated content")
    parser.add_argument("--no-progress", action="store_true", help="Log chapter progress instead of drawing a progress bar")
    parser.add_argument("--retry-failed", action="store_true",
                        help="Refetch chapters whose failure was cached by an earlier run")
    return parser.parse_args(argv)


def options_from_args(args) -> AcquisitionOptions:
    return AcquisitionOptions(
        skip_failing_chapters=args.skip_failing,
        manual_delay_ms=args.delay,
        override_minimum_delay=args.override_min_delay,
        remove_next_and_previous_chapter_links=not args.keep_nav_links,
        remove_author_notes=args.remove_author_notes,
        add_information_page=not args.no_info_page,
        chapters_page_in_chapter_list=args.include_toc_page,
        no_images=args.no_images,
        use_cache=not args.no_cache,
        epub_structure=args.structure,
        default_author=args.author or "<unknown>",
        site_password=args.password or os.getenv("WEBFIC_SITE_PASSWORD"),
    )


def cookies_for_url(path: Optional[str], url: str) -> Optional[Dict[str, str]]:
    entries = load_cookie_file(path) if path else []
    if not entries: return None
    host = urlparse(url).netloc.lower()
    jar = {}
    for c in entries:
        dom = c.get("domain", "").lower()
        if dom and (host == dom or host.endswith(f".{dom}")):
            jar[c["name"]] = c["value"]
    return jar or None


async def prepare_cache(options: AcquisitionOptions, clear: bool) -> Optional[FileChapterCache]:
    if not options.use_cache:
        return None
    cache = FileChapterCache(os.getenv("WEBFIC_CACHE_DIR", DEFAULT_CACHE_DIR))
    if clear:
        removed = await cache.clear_all()
        log.info(f"Cleared {removed} chapter cache entries")
    else:
        await cache.clear_old_entries()
    return cache


def install_cancel_handler(cancel_event: asyncio.Event) -> bool:
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, cancel_event.set)
        return True
    except (NotImplementedError, RuntimeError):
        return False


def read_custom_css(path: Optional[str]) -> Optional[str]:
    if not path:
        return None
    try:
        with open(path, 'r', encoding='utf-8') as f:
            return f.read()
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigurationError(f"Cannot read CSS file {path}: {e}") from e


async def download_story(args, options: AcquisitionOptions) -> str:
    url = args.url
    css_content = read_custom_css(args.css)
    profile = ProfileManager.get_instance().get_profile(url)
    parser = ParserRegistry.get_parser(url, options, profile)
    cache = await prepare_cache(options, args.clear_cache)
    structure = EpubStructure.get(options.epub_structure)

    async with get_session(cookies_for_url(args.cookie_file, url)) as session:
        transport = FetchTransport(session, extra_headers=profile.headers if profile else None,
                                   is_custom_error=parser.is_custom_error)
        toc_dom = await transport.fetch(url)
        rate_limiter = RateLimiter.for_parser(parser, options)

        discovered = await parser.discover_chapters(toc_dom, transport, rate_limiter)
        if options.chapters_page_in_chapter_list:
            discovered.insert(0, {"source_url": url, "title": "Table of Contents"})
        chapters = ChapterSet.from_discovered(discovered, parser.normalize_url)
        if not len(chapters):
            raise NoChaptersError(f"No chapters found at {url}")
        selected = parse_chapter_spec(args.chapters)
        if selected:
            chapters.select(selected)
        meta = parser.get_epub_meta_info(toc_dom, url)
        log.info(f"'{meta.title}': {len(chapters.includeable())} of {len(chapters)} chapters selected")

        images = None if options.no_images else ImageCollector(transport, structure)
        if args.no_progress:
            reporter = LoggingStatusReporter()
        else:
            reporter = TqdmStatusReporter(len(chapters.includeable()))
        cancel_event = asyncio.Event()
        handler_installed = install_cancel_handler(cancel_event)
        controller = AcquisitionController(
            parser, chapters, transport, cache=cache, images=images, reporter=reporter,
            options=options, rate_limiter=rate_limiter, cancel_event=cancel_event,
        )
        try:
            report = await controller.run()
            if args.retry_failed and not report.cancelled:
                retried = await controller.retry_cached_failures()
                if retried:
                    log.info(f"Refetching {retried} chapters whose failure was cached")
                    report = await controller.run()
        finally:
            reporter.close()
            await controller.flush_cache_writes()
            if handler_installed:
                asyncio.get_running_loop().remove_signal_handler(signal.SIGINT)

        if report.cancelled:
            log.warning("Cancelled; packing the chapters fetched so far.")
        supplier = EpubItemSupplier(parser, chapters, images, options, toc_dom=toc_dom, toc_url=url, title=meta.title)
        items = supplier.build()

    if not items:
        raise NoChaptersError(f"Nothing to pack for {url}")

    fname = args.output or f"{sanitize_filename(meta.file_name)}.epub"
    return EpubWriter.write(items, meta, fname, supplier.images, structure, css_content)


async def async_main(argv=None) -> int:
    args = parse_args(argv)
    options = options_from_args(args)
    try:
        await download_story(args, options)
    except AcquisitionAborted as e:
        log.error(f"Chapter collection halted at {getattr(e.cause, 'url', None) or 'a chapter'}: {e.cause}. "
                  f"Use --skip-failing to pack the book without failed chapters.")
        return 1
    except WebficError as e:
        log.error(f"Failed to build EPUB from {args.url}: {e}")
        return 1
    return 0


def cli():
    sys.exit(asyncio.run(async_main()))


if __name__ == "__main__":
    cli()
