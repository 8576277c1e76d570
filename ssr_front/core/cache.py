import time
from typing import Callable, Optional

from cachetools import TTLCache


def create_render_cache(
    max_size: int,
    max_age: float,
    timer: Callable[[], float] = time.monotonic,
) -> Optional[TTLCache]:
    """Bounded LRU cache of finished renders whose entries expire after ``max_age`` seconds.

    Returns ``None`` when ``max_size <= 0``, which disables render caching.
    """
    if max_size <= 0:
        return None
    return TTLCache(maxsize=max_size, ttl=max_age, timer=timer)
