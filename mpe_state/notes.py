from __future__ import annotations

from dataclasses import FrozenInstanceError, dataclass, field
from typing import Iterator, List, Optional, Tuple


DEFAULT_RELEASED_CAPACITY = 8
_IDENTITY_FIELDS = ("channel", "note", "velocity_on", "start_ts")


@dataclass(eq=False)
class NoteRecord:
    """One note's lifetime on one channel.

    The identity fields are fixed at note-on and cannot be reassigned.
    ``velocity_off`` and ``release_ts`` stay None until the note is released.
    """

    channel: int
    note: int
    velocity_on: int
    start_ts: float
    velocity_off: Optional[int] = None
    release_ts: Optional[float] = None

    def __setattr__(self, name: str, value: object) -> None:
        if name in _IDENTITY_FIELDS and name in self.__dict__:
            raise FrozenInstanceError(f"cannot assign to field {name!r}")
        object.__setattr__(self, name, value)

    @property
    def key(self) -> Tuple[int, int, float]:
        return (self.channel, self.note, self.start_ts)

    @property
    def released(self) -> bool:
        return self.release_ts is not None

    def release(self, velocity: int, ts: float) -> None:
        if self.released:
            raise RuntimeError(f"note {self.key} already released")
        self.velocity_off = int(velocity)
        self.release_ts = ts

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, NoteRecord):
            return NotImplemented
        return self.key == other.key

    def __hash__(self) -> int:
        return hash(self.key)

    def as_dict(self) -> dict:
        return {
            "channel": self.channel,
            "note": self.note,
            "velocityOn": self.velocity_on,
            "startTs": self.start_ts,
            "velocityOff": self.velocity_off,
            "releaseTs": self.release_ts,
        }


@dataclass
class ReleasedRing:
    """Fixed-capacity FIFO of released notes for a single channel.

    Backed by a preallocated list and a write cursor; pushing onto a full
    ring overwrites the oldest slot.
    """

    capacity: int = DEFAULT_RELEASED_CAPACITY
    _slots: List[Optional[NoteRecord]] = field(default_factory=list, init=False, repr=False)
    _cursor: int = field(default=0, init=False, repr=False)
    _count: int = field(default=0, init=False, repr=False)

    def __post_init__(self) -> None:
        if int(self.capacity) < 1:
            raise ValueError("capacity must be >= 1")
        self.capacity = int(self.capacity)
        self._slots = [None] * self.capacity

    def __len__(self) -> int:
        return self._count

    def __iter__(self) -> Iterator[NoteRecord]:
        return self.most_recent(self._count)

    def push(self, rec: NoteRecord) -> Optional[NoteRecord]:
        """Store rec, returning the evicted record when the ring was full."""
        evicted = self._slots[self._cursor] if self._count == self.capacity else None
        self._slots[self._cursor] = rec
        self._cursor = (self._cursor + 1) % self.capacity
        if self._count < self.capacity:
            self._count += 1
        return evicted

    def most_recent(self, n: int = 1) -> Iterator[NoteRecord]:
        """Yield up to n records, newest first. Each call starts afresh."""
        n = max(0, min(int(n), self._count))
        for i in range(n):
            rec = self._slots[(self._cursor - 1 - i) % self.capacity]
            if rec is not None:
                yield rec

    def newest(self) -> Optional[NoteRecord]:
        return next(self.most_recent(1), None)

    def oldest(self) -> Optional[NoteRecord]:
        if self._count == 0:
            return None
        return self._slots[(self._cursor - self._count) % self.capacity]
