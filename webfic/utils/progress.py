from typing import List
from tqdm import tqdm

from ..models import log, Chapter, ChapterStatus, TERMINAL_STATUSES


class StatusReporter:
    """Sink for chapter status changes; nothing it does feeds back into fetching."""

    def report(self, chapter: Chapter, status: ChapterStatus) -> None:
        pass

    def warning(self, message: str) -> None:
        pass

    def close(self) -> None:
        pass


class NullStatusReporter(StatusReporter):
    pass


class LoggingStatusReporter(StatusReporter):
    def report(self, chapter, status):
        if status == ChapterStatus.ERROR:
            log.error(f"[{chapter.sequence_index + 1}] {chapter.title or chapter.source_url}: {chapter.error}")
        elif status == ChapterStatus.DOWNLOADED:
            log.info(f"[{chapter.sequence_index + 1}] {chapter.title or chapter.source_url}: downloaded")
        else:
            log.debug(f"[{chapter.sequence_index + 1}] {chapter.source_url}: {status.value}")

    def warning(self, message):
        log.warning(message)


class TqdmStatusReporter(StatusReporter):
    """Progress bar over chapters; errors and warnings are written above the bar."""

    def __init__(self, total: int, desc: str = "Fetching chapters"):
        self.bar = tqdm(total=total, desc=desc, unit="ch")
        self.warnings: List[str] = []
        self.failed = 0

    def report(self, chapter, status):
        if status in TERMINAL_STATUSES:
            self.bar.update(1)
        if status == ChapterStatus.ERROR:
            self.failed += 1
            self.bar.set_postfix(failed=self.failed)
            tqdm.write(f"Error: {chapter.source_url}: {chapter.error}")
        elif status == ChapterStatus.SLEEPING:
            self.bar.set_postfix_str(f"waiting: {chapter.title or chapter.source_url}"[:60])

    def warning(self, message):
        self.warnings.append(message)
        tqdm.write(f"Warning: {message}")

    def close(self):
        self.bar.close()
