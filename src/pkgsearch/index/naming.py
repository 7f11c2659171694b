"""Generation names that sort lexically in creation order."""

from __future__ import annotations

import re
import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

_STAMP_FORMAT = "%Y%m%d%H%M%S%f"
_STAMP_RE = re.compile(r"-(\d{20})$")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class GenerationNamer:
    """Produce ``<prefix>-<UTC timestamp to the microsecond>`` names.

    Names handed out by one namer are strictly increasing even if the clock
    stalls or steps backwards: a stamp that would not advance is bumped one
    microsecond past the previous one.
    """

    def __init__(self, prefix: str, clock: Callable[[], datetime] = _utcnow) -> None:
        self.prefix = prefix.rstrip("-").lower()
        self._clock = clock
        self._last: Optional[datetime] = None
        self._lock = threading.Lock()

    def next_name(self) -> str:
        with self._lock:
            stamp = self._clock().astimezone(timezone.utc)
            if self._last is not None and stamp <= self._last:
                stamp = self._last + timedelta(microseconds=1)
            self._last = stamp
        return f"{self.prefix}-{stamp.strftime(_STAMP_FORMAT)}"


def generation_created_at(name: str) -> Optional[datetime]:
    """Recover the creation time encoded in a generation name, if any."""
    m = _STAMP_RE.search(name)
    if not m:
        return None
    return datetime.strptime(m.group(1), _STAMP_FORMAT).replace(tzinfo=timezone.utc)
