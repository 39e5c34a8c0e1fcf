from urllib.parse import urlparse
from typing import Callable, Dict, Optional

from ..models import log, AcquisitionOptions, SiteProfile
from .base import SiteParser

ParserFactory = Callable[..., SiteParser]


class ParserRegistry:
    """Maps hostnames (and profile aliases) to parser factories."""
    _factories: Dict[str, ParserFactory] = {}

    @classmethod
    def register(cls, hostname: str, factory: Optional[ParserFactory] = None):
        """``register("site.com", Factory)`` or ``@register("site.com")`` on a class."""
        def _add(f):
            cls._factories[cls._key(hostname)] = f
            return f
        if factory is not None:
            return _add(factory)
        return _add

    @staticmethod
    def _key(hostname: str) -> str:
        host = (hostname or "").lower()
        return host[4:] if host.startswith("www.") else host

    @classmethod
    def registered(cls):
        return sorted(cls._factories)

    @classmethod
    def get_parser(cls, url: str, options: Optional[AcquisitionOptions] = None,
                   profile: Optional[SiteProfile] = None) -> SiteParser:
        # Site modules register themselves on import.
        from . import wordpress, chrysanthemumgarden, empirenovel  # noqa: F401
        from .generic import GenericParser

        if profile and profile.parser_alias:
            factory = cls._factories.get(cls._key(profile.parser_alias))
            if factory:
                return factory(options=options, profile=profile)
            if profile.parser_alias.lower() == "generic":
                return GenericParser(options=options, profile=profile)
            log.warning(f"Unknown parser alias '{profile.parser_alias}' in profile {profile.name}")

        host = cls._key(urlparse(url).netloc)
        factory = cls._factories.get(host)
        if factory:
            return factory(options=options, profile=profile)
        log.info(f"No dedicated parser for {host}, using generic parser")
        return GenericParser(options=options, profile=profile)
