import os
import yaml
import re
from typing import List, Optional
from ..models import log, SiteProfile

DEFAULT_PROFILE_PATHS = ["sites.yaml", os.path.expanduser("~/.config/webfic/sites.yaml")]

class ProfileManager:
    _instance = None
    def __init__(self, config_paths: List[str] = None):
        self.profiles: List[SiteProfile] = []
        if config_paths:
            for path in config_paths:
                self.load_config(path)
    @classmethod
    def get_instance(cls, extra_paths: Optional[List[str]] = None):
        if not cls._instance:
            cls._instance = cls(list(extra_paths or []) + DEFAULT_PROFILE_PATHS)
        return cls._instance
    def load_config(self, path: str):
        if not os.path.exists(path): return
        try:
            with open(path, 'r') as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            log.warning(f"Failed to load config {path}: {e}")
            return
        if not data or not isinstance(data, list): return
        for item in data:
            self.profiles.append(SiteProfile(
                name=item.get("name", "Unknown"),
                domain_patterns=item.get("domains", []),
                parser_alias=item.get("parser"),
                content_selector=item.get("content_selector"),
                chapter_selector=item.get("chapter_selector"),
                title_selector=item.get("title_selector"),
                remove_selectors=item.get("remove", []),
                headers=item.get("headers", {}),
                max_simultaneous_fetch_size=item.get("max_simultaneous_fetch_size"),
                minimum_throttle=item.get("minimum_throttle"),
                shared_page=bool(item.get("shared_page", False)),
            ))
        log.info(f"Loaded {len(data)} profiles from {path}")
    def get_profile(self, url: str) -> Optional[SiteProfile]:
        for p in self.profiles:
            for pattern in p.domain_patterns:
                try:
                    if re.search(pattern, url): return p
                except re.error:
                    log.warning(f"Bad domain pattern '{pattern}' in profile {p.name}")
        return None
