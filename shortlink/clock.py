"""Injectable wall clock."""

import datetime
from collections.abc import Callable

__all__ = ["Clock", "utc_now"]

Clock = Callable[[], datetime.datetime]


def utc_now() -> datetime.datetime:
    return datetime.datetime.now(datetime.UTC)
