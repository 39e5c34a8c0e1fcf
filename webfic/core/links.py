import os
from typing import Callable, Dict, List
from urllib.parse import urljoin, urldefrag

from ..models import log, EpubItem, normalize_url_for_compare
from .epub_structure import EpubStructure, EPUB_STRUCTURE


class HyperlinkResolver:
    """Rewrites links between chapters of the book to point at the packaged files.

    Links to pages that are not in the book are left as absolute URLs. When several
    items come from the same page (a chapter split in parts) links go to the first.
    """

    def __init__(self, structure: EpubStructure = EPUB_STRUCTURE,
                 normalize: Callable[[str], str] = normalize_url_for_compare):
        self.structure = structure
        self.normalize = normalize

    def targets(self, items: List[EpubItem]) -> Dict[str, str]:
        targets: Dict[str, str] = {}
        for item in items:
            if not item.source_url:
                continue
            key = self.normalize(item.source_url)
            if key and key not in targets:
                targets[key] = self.structure.relative_text_path + os.path.basename(item.file_name(self.structure))
        return targets

    def resolve(self, items: List[EpubItem]) -> List[EpubItem]:
        targets = self.targets(items)
        rewritten = 0
        for item in items:
            for link in item.hyperlinks():
                href = link['href'].strip()
                if not href or href.startswith('#') or href.startswith(self.structure.relative_text_path):
                    continue
                absolute = urljoin(item.source_url or "", href)
                page, fragment = urldefrag(absolute)
                key = self.normalize(page)
                target = targets.get(key) if key else None
                if target is None:
                    link['href'] = absolute
                    continue
                link['href'] = f"{target}#{fragment}" if fragment else target
                rewritten += 1
        if rewritten:
            log.debug(f"Pointed {rewritten} hyperlinks at chapters inside the book")
        return items
