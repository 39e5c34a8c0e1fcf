import asyncio
from typing import Any, Optional

from ..models import log, MINIMUM_THROTTLE_MS, AcquisitionOptions


class RateLimiter:
    """Spacing between network fetches to one site during a run (milliseconds)."""

    def __init__(self, minimum_throttle: int = MINIMUM_THROTTLE_MS, manual_delay: Any = None, override_minimum: bool = False):
        self.minimum_throttle = minimum_throttle
        self.manual_delay = manual_delay
        self.override_minimum = override_minimum

    @classmethod
    def for_parser(cls, parser, options: Optional[AcquisitionOptions] = None) -> "RateLimiter":
        options = options or AcquisitionOptions()
        throttle = getattr(parser, "minimum_throttle", None)
        return cls(
            minimum_throttle=MINIMUM_THROTTLE_MS if throttle is None else throttle,
            manual_delay=options.manual_delay_ms,
            override_minimum=options.override_minimum_delay,
        )

    @property
    def delay_ms(self) -> int:
        try:
            manual = int(self.manual_delay)
        except (TypeError, ValueError):
            manual = self.minimum_throttle
        if self.override_minimum:
            return max(0, manual)
        return max(self.minimum_throttle, manual)

    async def wait(self) -> None:
        delay = self.delay_ms
        if delay > 0:
            log.debug(f"Rate limit: sleeping {delay}ms")
            await asyncio.sleep(delay / 1000)
