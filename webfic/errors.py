from typing import Optional


class WebficError(Exception):
    """Base class for all errors raised by webfic."""


class FetchError(WebficError):
    """Raised by the fetch transport once its own retries are exhausted."""

    def __init__(self, message: str, url: Optional[str] = None):
        super().__init__(message)
        self.url = url


class NetworkError(FetchError):
    pass


class HttpStatusError(FetchError):
    def __init__(self, status: int, url: Optional[str] = None):
        super().__init__(f"HTTP {status} fetching {url}", url)
        self.status = status


class FetchTimeoutError(FetchError):
    pass


class CustomSiteError(FetchError):
    """The site answered 200 but the page is an error page (captcha, lock, ...)."""


class ContentNotFoundError(WebficError):
    def __init__(self, url: str):
        super().__init__(f"Could not find content element for web page '{url}'.")
        self.url = url


class CachedChapterError(WebficError):
    """An earlier failure replayed from the chapter cache."""

    def __init__(self, url: str, message: str):
        super().__init__(message)
        self.url = url


class CacheError(WebficError):
    pass


class CacheReadError(CacheError):
    pass


class CacheWriteError(CacheError):
    pass


class NoChaptersError(WebficError):
    pass


class ConfigurationError(WebficError):
    """Unusable command line input, such as a CSS file that cannot be read."""


class AcquisitionAborted(WebficError):
    """First chapter failure when failing chapters are not skipped."""

    def __init__(self, cause: BaseException):
        super().__init__(f"Chapter collection halted: {cause}")
        self.cause = cause
