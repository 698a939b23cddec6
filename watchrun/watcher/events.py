"""
watchrun Watcher Events.

Raw filesystem notifications and the coalesced batches built from them.
Requires Python 3.11+.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path


class ChangeKind(str, Enum):
    """Kind of a raw filesystem notification."""

    CREATED = "created"
    MODIFIED = "modified"
    REMOVED = "removed"
    RENAMED = "renamed"
    OTHER = "other"


@dataclass(frozen=True)
class RawEvent:
    """A single low-level change notification."""

    path: Path
    kind: ChangeKind
    observed_at: float = field(default_factory=time.monotonic)


@dataclass(frozen=True)
class ChangeBatch:
    """A coalesced set of distinct changed paths representing one trigger."""

    trigger_time: float
    paths: frozenset[Path]

    @property
    def size(self) -> int:
        """Number of distinct paths in the batch."""
        return len(self.paths)

    def __contains__(self, path: object) -> bool:
        return path in self.paths
