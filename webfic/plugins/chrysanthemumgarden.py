from typing import List

from .registry import ParserRegistry
from .wordpress import WordpressBaseParser
from ..models import log
from ..utils.html import decipher, remove_elements, get_base_url

CIPHER = "tonquerzlawicvfjpsyhgdmkbxJKABRUDQZCTHFVLIWNEYPSXGOM"


@ParserRegistry.register("chrysanthemumgarden.com")
class ChrysanthemumgardenParser(WordpressBaseParser):
    content_selector = "div#novel-content"
    chapter_link_selector = "div.chapter-item a"
    title_selector = "h2.chapter-title, h1.entry-title"

    async def discover_chapters(self, dom, transport, rate_limiter) -> List[dict]:
        return self.links_to_chapters(dom.select(self.chapter_link_selector), get_base_url(dom))

    async def fetch_chapter(self, url, transport, fetch_cache):
        dom = await transport.fetch(url)
        form = dom.select_one("form#password-lock")
        if form is not None:
            if not self.options.site_password:
                log.warning(f"{url} is password protected and no site password was given")
                return dom
            dom = await transport.fetch(url, method="POST", data=self.password_form_data(form))
        return dom

    def password_form_data(self, form) -> dict:
        def input_value(selector):
            field = form.select_one(f"input{selector}")
            return field.get("value", "") if field else ""
        return {
            "site-pass": self.options.site_password,
            "nonce-site-pass": input_value("#nonce-site-pass"),
            "_wp_http_referer": input_value("[name='_wp_http_referer']"),
        }

    def preprocess_raw_dom(self, dom):
        content = self.locate_content(dom)
        if content is not None and not self.options.remove_author_notes:
            for note in dom.select("div.tooltip-container"):
                content.append(note.extract())
        for img in dom.select("img.br-lazy[data-breeze]"):
            img["src"] = img["data-breeze"]

    def custom_content_step(self, chapter, content):
        for node in content.select(".jum"):
            decipher(node, CIPHER)
            node["class"] = [c for c in node.get("class", []) if c != "jum"]
        remove_elements(content.select("[style*='height:1px']"))
        self.tag_author_notes_by_selector(content, "div.tooltip-container")
