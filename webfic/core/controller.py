import asyncio
from dataclasses import dataclass
from typing import List, Optional, Set

from bs4 import BeautifulSoup, Tag

from ..models import log, AcquisitionOptions, Chapter, ChapterStatus
from ..errors import AcquisitionAborted, CachedChapterError, ContentNotFoundError
from ..utils.html import get_base_url, parse_fragment
from ..utils.progress import StatusReporter, NullStatusReporter
from .chapter_set import ChapterSet
from .chapter_cache import ChapterCache
from .fetch_cache import FetchCache
from .normalizer import ContentNormalizer
from .rate_limit import RateLimiter


@dataclass
class AcquisitionReport:
    fetched: int = 0
    from_cache: int = 0
    failed: int = 0
    cancelled: bool = False

    @property
    def total(self) -> int:
        return self.fetched + self.from_cache + self.failed


class AcquisitionController:
    """Drives every pending chapter of a ChapterSet to DOWNLOADED or ERROR.

    Chapters are fetched in consecutive groups of ``parser.max_simultaneous_fetch_size``.
    A group is a barrier: the next one starts only after every member has settled, so
    groups complete in book order. The chapter cache is consulted before the rate
    limiter, so cached chapters cost neither a request nor a delay.

    With ``skip_failing_chapters`` off, the first failure stops the run and ``run()``
    raises ``AcquisitionAborted``. Setting ``cancel_event`` stops the run quietly once
    the current group has settled.
    """

    def __init__(
        self,
        parser,
        chapters: ChapterSet,
        transport,
        cache: Optional[ChapterCache] = None,
        images=None,
        reporter: Optional[StatusReporter] = None,
        options: Optional[AcquisitionOptions] = None,
        rate_limiter: Optional[RateLimiter] = None,
        cancel_event: Optional[asyncio.Event] = None,
        normalizer: Optional[ContentNormalizer] = None,
    ):
        self.parser = parser
        self.chapters = chapters
        self.transport = transport
        self.cache = cache
        self.options = options or AcquisitionOptions()
        self.images = None if self.options.no_images else images
        self.reporter = reporter or NullStatusReporter()
        self.rate_limiter = rate_limiter or RateLimiter.for_parser(parser, self.options)
        self.cancel_event = cancel_event or asyncio.Event()
        self.normalizer = normalizer or ContentNormalizer(parser, self.options, self.reporter)
        self.fetch_cache = FetchCache()
        self._cache_writes: Set[asyncio.Task] = set()

    def groups(self, chapters: List[Chapter]) -> List[List[Chapter]]:
        size = max(1, int(getattr(self.parser, "max_simultaneous_fetch_size", 1) or 1))
        return [chapters[i:i + size] for i in range(0, len(chapters), size)]

    async def run(self) -> AcquisitionReport:
        report = AcquisitionReport()
        pending = self.chapters.pending()
        if not pending:
            log.info("No chapters left to fetch.")
            return report
        log.info(f"Fetching {len(pending)} chapters")

        for group in self.groups(pending):
            if self.cancel_event.is_set():
                report.cancelled = True
                log.info("Chapter collection cancelled.")
                break
            results = await asyncio.gather(
                *[self._fetch_chapter(chapter, report) for chapter in group],
                return_exceptions=True
            )
            failures = [r for r in results if isinstance(r, BaseException)]
            if failures:
                raise AcquisitionAborted(failures[0]) from failures[0]

        log.info(f"Chapters: {report.fetched} fetched, {report.from_cache} from cache, {report.failed} failed")
        return report

    def _set_status(self, chapter: Chapter, status: ChapterStatus) -> None:
        chapter.advance(status)
        self.reporter.report(chapter, status)

    async def _fetch_chapter(self, chapter: Chapter, report: AcquisitionReport) -> None:
        try:
            if await self._load_from_cache(chapter, report):
                return
            self._set_status(chapter, ChapterStatus.SLEEPING)
            await self.rate_limiter.wait()
            self._set_status(chapter, ChapterStatus.DOWNLOADING)
            content = await self._download(chapter)
            await self._collect_images(chapter, content)
            chapter.content = content
            self._set_status(chapter, ChapterStatus.DOWNLOADED)
            report.fetched += 1
        except Exception as e:
            self._record_failure(chapter, e, report)
            if self.options.skip_failing_chapters:
                log.warning(f"Skipping chapter {chapter.source_url}: {e}")
                return
            chapter.is_includeable = False
            raise

    async def _load_from_cache(self, chapter: Chapter, report: AcquisitionReport) -> bool:
        """True when the cache settled the chapter, either with content or with an old error."""
        if self.cache is None or not self.options.use_cache:
            return False
        try:
            html = await self.cache.get(chapter.source_url)
            error = None if html is not None else await self.cache.get_error(chapter.source_url)
        except Exception as e:
            log.warning(f"Chapter cache read failed for {chapter.source_url}, fetching instead: {e}")
            return False

        if error is not None:
            chapter.error = CachedChapterError(chapter.source_url, error)
            self._set_status(chapter, ChapterStatus.ERROR)
            report.failed += 1
            log.info(f"Using cached error for {chapter.source_url}: {error}")
            return True
        if html is None:
            return False

        content = parse_fragment(html)
        if content is None:
            log.warning(f"Cached chapter {chapter.source_url} is empty, fetching instead")
            return False
        self._set_status(chapter, ChapterStatus.DOWNLOADING)
        chapter.is_cached_content = True
        self.normalizer.reenter_cached(chapter, content)
        await self._collect_images(chapter, content)
        chapter.content = content
        self._set_status(chapter, ChapterStatus.DOWNLOADED)
        report.from_cache += 1
        return True

    async def _download(self, chapter: Chapter) -> Tag:
        dom: BeautifulSoup = await self.parser.fetch_chapter(chapter.source_url, self.transport, self.fetch_cache)
        self.parser.preprocess_raw_dom(dom)
        self.parser.remove_unused_elements_to_reduce_memory(dom)
        content = self.parser.locate_content(dom)
        if content is None:
            raise ContentNotFoundError(chapter.source_url)
        chapter.raw_dom = dom
        self.normalizer.normalize(chapter, content, dom)
        base_url = get_base_url(dom) or chapter.source_url
        if self.images is not None:
            self.images.preprocess_image_tags(content, base_url)
        self._schedule_cache_write(chapter.source_url, html=str(content))
        return content

    async def _collect_images(self, chapter: Chapter, content: Tag) -> None:
        if self.images is None:
            return
        _, found = await self.images.collect(content, chapter.source_url)
        if found:
            log.debug(f"{chapter.source_url}: {found} new images")

    def _record_failure(self, chapter: Chapter, error: Exception, report: AcquisitionReport) -> None:
        chapter.error = error
        chapter.raw_dom = None
        chapter.content = None
        self._set_status(chapter, ChapterStatus.ERROR)
        report.failed += 1
        log.error(f"Chapter {chapter.sequence_index + 1} ({chapter.source_url}) failed: {error}")
        self._schedule_cache_write(chapter.source_url, error=str(error))

    # --- Chapter cache writes ---

    def _schedule_cache_write(self, url: str, html: Optional[str] = None, error: Optional[str] = None) -> None:
        if self.cache is None or not self.options.use_cache:
            return
        task = asyncio.create_task(self._write_cache(url, html, error))
        self._cache_writes.add(task)
        task.add_done_callback(self._cache_writes.discard)

    async def _write_cache(self, url: str, html: Optional[str], error: Optional[str]) -> None:
        try:
            if error is not None:
                await self.cache.set_error(url, error)
            else:
                await self.cache.set(url, html)
        except Exception as e:
            log.warning(f"Could not write chapter cache for {url}: {e}")

    async def flush_cache_writes(self) -> None:
        """Wait for outstanding cache writes; call before the loop shuts down."""
        while self._cache_writes:
            await asyncio.gather(*list(self._cache_writes))

    async def retry_chapter(self, url: str) -> Chapter:
        """Reset a failed chapter to PENDING and forget its cached error; ``run()`` fetches it again."""
        await self.flush_cache_writes()
        chapter = self.chapters.retry(url)
        if self.cache is not None:
            try:
                await self.cache.remove(chapter.source_url)
            except Exception as e:
                log.warning(f"Could not clear cached error for {chapter.source_url}: {e}")
        return chapter

    async def retry_cached_failures(self) -> int:
        """Retry every chapter whose failure was replayed from the cache; returns how many."""
        failed = [c for c in self.chapters
                  if c.status == ChapterStatus.ERROR and isinstance(c.error, CachedChapterError)]
        for chapter in failed:
            await self.retry_chapter(chapter.source_url)
        return len(failed)
