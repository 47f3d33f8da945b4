from __future__ import annotations

import time
from typing import Callable
from uuid import uuid4

Clock = Callable[[], int]
IdFactory = Callable[[], str]


def now_ms() -> int:
    """Current wall-clock time as integer epoch milliseconds."""
    return int(time.time() * 1000)


def unique_id() -> str:
    return str(uuid4())
