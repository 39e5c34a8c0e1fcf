import os
import asyncio
import aiohttp
import socket
from contextlib import asynccontextmanager
from typing import Callable, List, Dict, Optional, Tuple, Any
from aiohttp.resolver import ThreadedResolver
from bs4 import BeautifulSoup

from ..models import log, REQUEST_TIMEOUT, IMAGE_TIMEOUT, MAX_RETRIES, RETRY_DELAY, IMG_MAX_RETRIES, IMG_RETRY_DELAY
from ..errors import NetworkError, HttpStatusError, FetchTimeoutError, CustomSiteError
from ..utils.html import set_base_tag

DEFAULT_HEADERS = {
    'User-Agent': 'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36',
    'Accept': 'text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8',
    'Accept-Language': 'en-US,en;q=0.5',
}

RETRYABLE_STATUSES = {429, 500, 502, 503, 504}

def load_cookie_file(path: str) -> List[Dict[str, str]]:
    """Parse Netscape cookie file format into a list of dict entries."""
    cookies = []
    if not path or not os.path.exists(path):
        return cookies
    try:
        with open(path, 'r', encoding='utf-8', errors='ignore') as f:
            for line in f:
                if not line or line.startswith('#'): continue
                parts = line.strip().split('\t')
                if len(parts) >= 7:
                    domain, _, _, _, _, name, value = parts[:7]
                    cookies.append({"domain": domain.lstrip('.'), "name": name, "value": value})
    except OSError as e:
        log.warning(f"Failed to parse cookies file {path}: {e}")
    return cookies

@asynccontextmanager
async def get_session(cookies: Optional[Dict[str, str]] = None):
    # Use threaded DNS to avoid pycares issues on Termux/Android and force IPv4 where needed
    connector = aiohttp.TCPConnector(
        resolver=ThreadedResolver(),
        ttl_dns_cache=300,
        family=socket.AF_INET
    )
    async with aiohttp.ClientSession(timeout=REQUEST_TIMEOUT, connector=connector, cookies=cookies) as session:
        yield session


class FetchTransport:
    """HTTP access for the pipeline.

    Retries transient failures (connection errors, timeouts, 429 and 5xx) on an
    exponential schedule ``backoff * 2**attempt`` and then raises a classified
    ``FetchError``. Callers never see a retry.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        extra_headers: Optional[Dict[str, str]] = None,
        max_retries: int = MAX_RETRIES,
        backoff: float = RETRY_DELAY,
        is_custom_error: Optional[Callable[[str], bool]] = None,
    ):
        self.session = session
        self.extra_headers = extra_headers or {}
        self.max_retries = max_retries
        self.backoff = backoff
        self.is_custom_error = is_custom_error

    def _headers(self, referer: Optional[str] = None, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        headers = dict(DEFAULT_HEADERS)
        headers.update(self.extra_headers)
        if referer:
            headers['Referer'] = referer
        if extra:
            headers.update(extra)
        return headers

    async def _request(
        self,
        url: str,
        response_type: str = 'text',
        method: str = 'GET',
        data: Any = None,
        referer: Optional[str] = None,
        extra_headers: Optional[Dict[str, str]] = None,
        max_retries: Optional[int] = None,
        backoff: Optional[float] = None,
        timeout=None,
    ) -> Tuple[Any, str, Any]:
        max_retries = max_retries or self.max_retries
        backoff = self.backoff if backoff is None else backoff
        last_error = None
        for attempt in range(max_retries):
            wait = backoff * (2 ** attempt)
            try:
                async with self.session.request(
                    method, url, data=data, allow_redirects=True,
                    headers=self._headers(referer, extra_headers),
                    timeout=timeout or REQUEST_TIMEOUT,
                ) as response:
                    final_url = str(response.url)

                    if response.status in RETRYABLE_STATUSES:
                        last_error = HttpStatusError(response.status, url)
                        if response.status == 429:
                            try:
                                retry_after = int(response.headers.get("Retry-After", 10))
                            except ValueError:
                                retry_after = 10
                            wait = max(retry_after, wait)
                            log.warning(f"Rate limit hit (429). Cooling down for {wait}s...")
                        else:
                            log.warning(f"HTTP {response.status} for {url}")
                    elif response.status >= 400:
                        log.warning(f"Non-retryable HTTP {response.status} for {url}")
                        raise HttpStatusError(response.status, url)
                    elif response_type == 'bytes':
                        return await response.read(), final_url, response.headers
                    else:
                        text = await response.text(encoding='utf-8', errors='replace')
                        if self.is_custom_error and self.is_custom_error(text):
                            last_error = CustomSiteError(f"Site returned an error page for {url}", url)
                            log.warning(f"Site error page for {url}")
                        else:
                            return text, final_url, response.headers

            except asyncio.TimeoutError as e:
                last_error = FetchTimeoutError(f"Timed out fetching {url}", url)
                log.warning(f"Attempt {attempt + 1}/{max_retries} timed out for {url}: {e}")
            except aiohttp.ClientError as e:
                last_error = NetworkError(f"Network error fetching {url}: {e}", url)
                log.warning(f"Attempt {attempt + 1}/{max_retries} failed for {url}: {e}")

            if attempt + 1 < max_retries:
                log.debug(f"Retrying {url} in {wait}s.")
                await asyncio.sleep(wait)
        raise last_error

    async def fetch_text(self, url: str, method: str = 'GET', data: Any = None) -> Tuple[str, str]:
        text, final_url, _ = await self._request(url, 'text', method=method, data=data)
        return text, final_url

    async def fetch(self, url: str, method: str = 'GET', data: Any = None) -> BeautifulSoup:
        """GET/POST ``url`` and return the parsed page with a <base> pointing at the final URL."""
        text, final_url = await self.fetch_text(url, method=method, data=data)
        dom = BeautifulSoup(text, 'lxml')
        set_base_tag(dom, final_url)
        return dom

    async def fetch_bytes(self, url: str, referer: Optional[str] = None, extra_headers: Optional[Dict[str, str]] = None):
        data, _, headers = await self._request(
            url, 'bytes', referer=referer, extra_headers=extra_headers,
            max_retries=IMG_MAX_RETRIES, backoff=IMG_RETRY_DELAY, timeout=IMAGE_TIMEOUT,
        )
        return data, headers
