# meerkat/fsmonitor/patterns.py

"""
Filename filters deciding which new files get reported
"""
import logging
import os
import re
import threading
import time
from typing import Callable, Iterable, List, Optional, Pattern

logger = logging.getLogger(__name__)

FilterFunc = Callable[[str], bool]

DEFAULT_IMAGE_PATTERNS = [r"(?i)\.jpe?g$"]


class FilenameFilter:
    """
    Accepts a path when its base name matches any of the patterns.

    Patterns are regular expressions searched in the base name; use an
    inline (?i) flag for case-insensitive matching.
    """

    def __init__(self, patterns: Iterable[str]):
        self.patterns = list(patterns)
        self.compiled: List[Pattern] = []
        for pattern in self.patterns:
            try:
                self.compiled.append(re.compile(pattern))
            except re.error as e:
                raise ValueError(f"Invalid filename pattern '{pattern}': {e}") from e

        logger.debug(f"FilenameFilter initialized with {len(self.compiled)} patterns")

    def __call__(self, path: str) -> bool:
        name = os.path.basename(path)
        return any(p.search(name) for p in self.compiled)

    def __repr__(self):
        return f"FilenameFilter({self.patterns!r})"


class StartTimeGate:
    """
    Only lets through files modified strictly after the gate was created.

    A fresh walk over an existing tree runs into files that were there before
    monitoring began; those are not news.
    """

    def __init__(self, base: FilterFunc, start_time: Optional[float] = None):
        self.base = base
        self.start_time = time.time() if start_time is None else start_time

    def __call__(self, path: str) -> bool:
        if not self.base(path):
            return False
        try:
            mtime = os.stat(path).st_mtime
        except OSError as e:
            logger.debug(f"Cannot stat {path}: {e}")
            return False
        return mtime > self.start_time


class RateLimitGate:
    """
    Enforces a minimum spacing between accepted paths, across all paths.

    A rate-limited path is dropped, not deferred.
    """

    def __init__(self, base: FilterFunc, min_interval: float,
                 clock: Callable[[], float] = time.monotonic):
        """
        Args:
            base: filter applied before the rate limit
            min_interval: seconds that must pass between two accepted paths
            clock: monotonic time source
        """
        if min_interval < 0:
            raise ValueError("min_interval must not be negative")
        self.base = base
        self.min_interval = min_interval
        self.clock = clock
        self.last_accepted: Optional[float] = None
        self.dropped = 0
        self._lock = threading.Lock()

    def __call__(self, path: str) -> bool:
        if not self.base(path):
            return False

        with self._lock:
            now = self.clock()
            if self.last_accepted is not None and now - self.last_accepted < self.min_interval:
                self.dropped += 1
                logger.info(f"Rate limit: dropping {path}")
                return False
            self.last_accepted = now
            return True


def new_file_filter_chain(base: FilterFunc, rate_limit: Optional[float] = None) -> FilterFunc:
    """
    Standard chain for reporting new files: base filter, then start-time
    gate, then an optional rate limit

    Args:
        base: usually a FilenameFilter
        rate_limit: minimum seconds between reported files, None or 0 disables
    """
    chain: FilterFunc = StartTimeGate(base)
    if rate_limit:
        chain = RateLimitGate(chain, rate_limit)
    return chain
