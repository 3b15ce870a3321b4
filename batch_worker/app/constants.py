"""Worker-level constants shared across modules."""
from __future__ import annotations

from enum import Enum

DEFAULT_MAX_BATCH_SIZE = 10
DEFAULT_MAX_WAIT_SECONDS = 0.1


class ConsumerState(str, Enum):
    IDLE = "IDLE"
    ACCUMULATING = "ACCUMULATING"
    FLUSHING = "FLUSHING"
    STOPPED = "STOPPED"
