from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, FrozenSet, List, Optional, Tuple

from mpe_state.channel import (
    DEFAULT_CONVENTIONAL_BEND_RANGE,
    DEFAULT_MEMBER_BEND_RANGE,
    MAX_BEND_RANGE,
    ChannelState,
)
from mpe_state.errors import InvalidChannel, OutOfRange, ZoneOverlap


LOWER = "lower"
UPPER = "upper"
MANAGER_CHANNELS = {LOWER: 1, UPPER: 16}


def zone_kind_for_manager(manager_channel: int) -> str:
    for kind, ch in MANAGER_CHANNELS.items():
        if ch == int(manager_channel):
            return kind
    raise InvalidChannel(f"zone manager channel must be 1 (lower) or 16 (upper), got {manager_channel}")


@dataclass(frozen=True)
class ZoneSnapshot:
    kind: str
    manager_channel: int
    member_channels: Tuple[int, ...]
    pitch_bend_range: int

    @property
    def member_count(self) -> int:
        return len(self.member_channels)

    @property
    def is_active(self) -> bool:
        return self.member_count > 0


class Zone:
    """Lower or Upper MPE zone: one manager channel plus a contiguous
    block of member channels growing away from it.

    Lower: manager 1, members 2..1+n. Upper: manager 16, members 16-n..15.
    Zero members means the zone is inactive and occupies no channel.
    """

    def __init__(self, kind: str) -> None:
        if kind not in MANAGER_CHANNELS:
            raise ValueError(f"unknown zone kind {kind!r}")
        self.kind = kind
        self.manager_channel = MANAGER_CHANNELS[kind]
        self.member_count = 0
        self.pitch_bend_range = DEFAULT_MEMBER_BEND_RANGE

    def __repr__(self) -> str:
        return f"Zone({self.kind}, members={list(self.member_channels)}, bend_range={self.pitch_bend_range})"

    @property
    def is_active(self) -> bool:
        return self.member_count > 0

    @property
    def member_channels(self) -> range:
        return self._members_for(self.member_count)

    @property
    def channels(self) -> FrozenSet[int]:
        return self.channels_for(self.member_count)

    def contains(self, channel: int) -> bool:
        return channel in self.channels

    def is_member(self, channel: int) -> bool:
        return self.is_active and channel in self.member_channels

    def _members_for(self, count: int) -> range:
        if self.kind == LOWER:
            return range(2, 2 + count)
        return range(16 - count, 16)

    def channels_for(self, count: int) -> FrozenSet[int]:
        if count <= 0:
            return frozenset()
        return frozenset(self._members_for(count)) | {self.manager_channel}

    def fit_count(self, blocked: FrozenSet[int]) -> int:
        """Largest member count whose channels avoid ``blocked``, capped at the current count."""
        if self.manager_channel in blocked:
            return 0
        count = 0
        for ch in self._members_for(self.member_count):
            if ch in blocked:
                break
            count += 1
        return count

    def validate(self, member_count: int, pitch_bend_range: int, other: Optional["Zone"]) -> None:
        """Raise unless configure() with these arguments would succeed."""
        if not 0 <= int(member_count) <= 15:
            raise OutOfRange(f"member count must be 0..15, got {member_count}")
        if not 0 <= int(pitch_bend_range) <= MAX_BEND_RANGE:
            raise OutOfRange(f"pitch bend range must be 0..{MAX_BEND_RANGE}, got {pitch_bend_range}")
        if other is not None and other.is_active:
            clash = self.channels_for(int(member_count)) & other.channels
            if clash:
                raise ZoneOverlap(
                    f"{self.kind} zone with {member_count} members overlaps {other.kind} zone on channels {sorted(clash)}"
                )

    def configure(self, channels: Dict[int, ChannelState], member_count: int, pitch_bend_range: int,
                  other: Optional["Zone"], ts: float) -> Tuple[List[int], List[int]]:
        """Resize the zone, resetting channels that leave or join it.

        Channels that stay keep their state. Returns (left, joined) channel
        lists; the manager is included when the zone (de)activates.
        """
        self.validate(member_count, pitch_bend_range, other)
        member_count = int(member_count)
        old_members = set(self.member_channels)
        old_all = self.channels
        new_all = self.channels_for(member_count)
        new_members = set(self._members_for(member_count))

        left = sorted(old_all - new_all)
        joined = sorted((new_all - old_all) | (new_members - old_members))

        self.member_count = member_count
        self.pitch_bend_range = int(pitch_bend_range)

        for ch in left:
            channels[ch].reset(DEFAULT_CONVENTIONAL_BEND_RANGE, ts)
        for ch in joined:
            if ch == self.manager_channel:
                channels[ch].reset(DEFAULT_CONVENTIONAL_BEND_RANGE, ts)
            else:
                channels[ch].reset(self.pitch_bend_range, ts)
        return left, joined

    def snapshot(self) -> ZoneSnapshot:
        return ZoneSnapshot(
            kind=self.kind,
            manager_channel=self.manager_channel,
            member_channels=tuple(self.member_channels),
            pitch_bend_range=self.pitch_bend_range,
        )
