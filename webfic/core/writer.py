from typing import List, Optional
from ebooklib import epub

from ..models import log, EpubItem, EpubMetaInfo, ImageAsset, AUTHOR_NOTE_CLASS_NAME
from .epub_structure import EpubStructure, EPUB_STRUCTURE

BASE_CSS = """
    body { font-family: serif; margin: 0.5em; line-height: 1.5; }
    h1 { font-size: 1.4em; text-align: center; margin: 0.5em 0 1em; }
    p { margin-top: 0; margin-bottom: 0.6em; }
    .epub-image { max-width: 100%; height: auto; display: block; margin: 0 auto; }
    blockquote { margin: 0.5em 1.5em; }
    table { border-collapse: collapse; }
    td, th { border: 1px solid #ccc; padding: 0.2em 0.4em; }
    .AUTHOR_NOTE { border: 1px solid #ddd; background: #f7f7f7; padding: 0.5em; margin: 1em 0; font-size: 0.9em; }
""".replace("AUTHOR_NOTE", AUTHOR_NOTE_CLASS_NAME)


class EpubWriter:
    @staticmethod
    def write(items: List[EpubItem], meta: EpubMetaInfo, output_path: str,
              images: Optional[List[ImageAsset]] = None,
              structure: EpubStructure = EPUB_STRUCTURE, custom_css: Optional[str] = None):
        book = epub.EpubBook()
        book.FOLDER_NAME = structure.content_dir
        book.set_identifier(meta.uuid)
        book.set_title(meta.title)
        book.set_language(meta.language)
        book.add_author(meta.author)
        if meta.description:
            book.add_metadata('DC', 'description', meta.description)
        if meta.uuid.startswith(("http://", "https://")):
            book.add_metadata('DC', 'source', meta.uuid)

        css = BASE_CSS
        if custom_css:
            css += f"\n{custom_css}"
        css_item = epub.EpubItem(uid="style_default", file_name=structure.stylesheet, media_type="text/css", content=css)
        book.add_item(css_item)

        for asset in images or []:
            img = epub.EpubImage(uid=asset.uid, file_name=asset.filename, media_type=asset.media_type, content=asset.content)
            book.add_item(img)

        epub_chapters = []
        for item in items:
            c = epub.EpubHtml(title=item.title, file_name=item.file_name(structure), lang=meta.language,
                              uid=f"{item.kind}_{item.index:04d}")
            c.content = str(item.content)
            c.add_link(href=structure.relative_style_path + "stylesheet.css", rel="stylesheet", type="text/css")
            book.add_item(c)
            epub_chapters.append(c)

        book.toc = tuple(epub_chapters)
        book.add_item(epub.EpubNcx())
        book.add_item(epub.EpubNav())
        book.spine = ['nav'] + epub_chapters

        epub.write_epub(output_path, book)
        log.info(f"Wrote EPUB: {output_path} ({len(epub_chapters)} items, {len(images or [])} images)")
        return output_path
