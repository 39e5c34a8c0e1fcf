from typing import Callable, Dict, Iterator, List, Optional

from ..models import (
    log, Chapter, ChapterStatus, normalize_url_for_compare, is_url
)

Normalizer = Callable[[str], str]


class ChapterSet:
    """Ordered chapters of one book, keyed by source URL; insertion order is book order."""

    def __init__(self, normalize: Normalizer = normalize_url_for_compare):
        self.normalize = normalize
        self._chapters: Dict[str, Chapter] = {}
        self._keys: Dict[str, str] = {}

    @classmethod
    def from_discovered(cls, discovered: List[dict], normalize: Normalizer = normalize_url_for_compare) -> "ChapterSet":
        chapter_set = cls(normalize)
        dropped = 0
        for entry in discovered:
            url = (entry.get("source_url") or "").strip()
            key = normalize(url)
            if not is_url(url) or key in chapter_set._keys:
                dropped += 1
                continue
            title = entry.get("title")
            chapter = Chapter(
                source_url=url,
                title=title.strip() if isinstance(title, str) and title.strip() else None,
                sequence_index=len(chapter_set._chapters),
                is_includeable=entry.get("is_includeable", True),
            )
            chapter_set._chapters[url] = chapter
            chapter_set._keys[key] = url
        if dropped:
            log.debug(f"Dropped {dropped} duplicate or invalid chapter URLs")
        chapter_set._link_neighbors()
        return chapter_set

    def _link_neighbors(self) -> None:
        chapters = list(self._chapters.values())
        for i, chapter in enumerate(chapters):
            neighbors = set()
            if i > 0:
                neighbors.add(self.normalize(chapters[i - 1].source_url))
            if i < len(chapters) - 1:
                neighbors.add(self.normalize(chapters[i + 1].source_url))
            chapter.neighbors = neighbors

    def __iter__(self) -> Iterator[Chapter]:
        return iter(self._chapters.values())

    def __len__(self) -> int:
        return len(self._chapters)

    def __getitem__(self, url: str) -> Chapter:
        chapter = self.get(url)
        if chapter is None:
            raise KeyError(url)
        return chapter

    def __contains__(self, url: str) -> bool:
        return self.get(url) is not None

    def get(self, url: str) -> Optional[Chapter]:
        chapter = self._chapters.get(url)
        if chapter is None:
            key = self._keys.get(self.normalize(url))
            chapter = self._chapters.get(key) if key else None
        return chapter

    def includeable(self) -> List[Chapter]:
        return [c for c in self if c.is_includeable]

    def pending(self) -> List[Chapter]:
        """Includeable chapters that still need fetching."""
        return [c for c in self.includeable()
                if c.status in (ChapterStatus.PENDING, ChapterStatus.SLEEPING)]

    def set_includeable(self, url: str, flag: bool) -> None:
        self[url].is_includeable = flag

    def select(self, numbers: List[int]) -> None:
        """Keep only the given 1-based chapter numbers includeable."""
        wanted = set(numbers)
        for chapter in self:
            chapter.is_includeable = (chapter.sequence_index + 1) in wanted

    def retry(self, url: str) -> Chapter:
        """Manual retry, the one status change allowed to go backwards."""
        chapter = self[url]
        if chapter.status != ChapterStatus.ERROR:
            raise ValueError(f"Only failed chapters can be retried: {url} is {chapter.status.name}")
        chapter.status = ChapterStatus.PENDING
        chapter.error = None
        chapter.is_includeable = True
        return chapter
