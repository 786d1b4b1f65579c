from __future__ import annotations

import time
from typing import Any, Callable, Dict, List, Optional, Tuple

from mpe_state.channel import (
    DEFAULT_CONVENTIONAL_BEND_RANGE,
    DEFAULT_MEMBER_BEND_RANGE,
    MAX_BEND_RANGE,
    ChannelState,
)
from mpe_state.errors import ChannelBusy, InvariantError, NoteMismatch, check_channel
from mpe_state.events import (
    RPN_MPE_CONFIGURATION,
    RPN_NULL,
    RPN_PITCH_BEND_SENSITIVITY,
    AllNotesOff,
    ChannelPressure,
    Event,
    NoteOff,
    NoteOn,
    NRPNSelect,
    PitchBend,
    PitchBendSensitivity,
    RPNSelect,
    RPNValue,
    Timbre,
    ZoneReconfigure,
)
from mpe_state.notes import DEFAULT_RELEASED_CAPACITY, NoteRecord
from mpe_state.zone import LOWER, UPPER, Zone, zone_kind_for_manager


Clock = Callable[[], float]


class MPEState:
    """Live state of the 16 channels and two zones of one MPE port.

    - Channel and Zone objects are created once and reset in place.
    - Every mutating call either applies fully or raises before touching state.
    - Invariants (one zone per channel, one note per channel) are re-checked
      after each mutating call unless ``check_invariants`` is False.
    - Not thread-safe: hosts that read from another thread hold a lock.
    """

    def __init__(self, released_capacity: int = DEFAULT_RELEASED_CAPACITY, clock: Optional[Clock] = None,
                 check_invariants: bool = True) -> None:
        self.clock: Clock = clock or time.monotonic
        self.check_invariants_enabled = bool(check_invariants)
        self.released_capacity = int(released_capacity)
        self.channels: Dict[int, ChannelState] = {
            ch: ChannelState(ch, DEFAULT_CONVENTIONAL_BEND_RANGE, self.released_capacity) for ch in range(1, 17)
        }
        self._zones: Dict[str, Zone] = {LOWER: Zone(LOWER), UPPER: Zone(UPPER)}
        # Selected-but-not-yet-applied RPN per channel
        self._pending_rpn: Dict[int, int] = {}
        self.metrics: Dict[str, int] = {
            "events": 0,
            "note_on": 0,
            "note_off": 0,
            "rejected_busy": 0,
            "rejected_mismatch": 0,
            "clamped": 0,
            "forced_releases": 0,
            "zone_changes": 0,
        }

    # --- Queries ---
    def channel_state(self, channel: int) -> ChannelState:
        return self.channels[check_channel(channel)]

    @property
    def lower_zone(self) -> Zone:
        return self._zones[LOWER]

    @property
    def upper_zone(self) -> Zone:
        return self._zones[UPPER]

    def zones(self) -> Tuple[Zone, ...]:
        """Active zones, lower first."""
        return tuple(z for z in (self.lower_zone, self.upper_zone) if z.is_active)

    def zone_of(self, channel: int) -> Optional[Zone]:
        ch = check_channel(channel)
        for z in self._zones.values():
            if z.contains(ch):
                return z
        return None

    def is_member_channel(self, channel: int) -> bool:
        ch = check_channel(channel)
        return any(z.is_member(ch) for z in self._zones.values())

    def is_manager_channel(self, channel: int) -> bool:
        ch = check_channel(channel)
        return any(z.is_active and z.manager_channel == ch for z in self._zones.values())

    def channel_role(self, channel: int) -> str:
        if self.is_manager_channel(channel):
            return "manager"
        if self.is_member_channel(channel):
            return "member"
        return "conventional"

    @property
    def is_active(self) -> bool:
        return any(z.is_active for z in self._zones.values())

    def active_notes(self) -> List[NoteRecord]:
        return [c.active_note for c in self.channels.values() if c.active_note is not None]

    def pending_rpn(self, channel: int) -> Optional[int]:
        return self._pending_rpn.get(check_channel(channel))

    # --- Notes ---
    def on_note_on(self, channel: int, note: int, velocity: int, ts: Optional[float] = None) -> NoteRecord:
        cs = self.channel_state(channel)
        try:
            rec = cs.note_on(note, velocity, self._ts(ts))
        except ChannelBusy:
            self.metrics["rejected_busy"] += 1
            raise
        self.metrics["note_on"] += 1
        self._after_update()
        return rec

    def force_note_on(self, channel: int, note: int, velocity: int, ts: Optional[float] = None) -> NoteRecord:
        cs = self.channel_state(channel)
        rec, evicted = cs.force_note_on(note, velocity, self._ts(ts))
        self.metrics["note_on"] += 1
        if evicted is not None:
            self.metrics["forced_releases"] += 1
        self._after_update()
        return rec

    def on_note_off(self, channel: int, note: int, velocity: int = 0, ts: Optional[float] = None) -> NoteRecord:
        cs = self.channel_state(channel)
        try:
            rec = cs.note_off(note, velocity, self._ts(ts))
        except NoteMismatch:
            self.metrics["rejected_mismatch"] += 1
            raise
        self.metrics["note_off"] += 1
        self._after_update()
        return rec

    def all_notes_off(self, channel: Optional[int] = None, ts: Optional[float] = None) -> List[NoteRecord]:
        """Release active notes on one channel or all of them. Controllers are untouched."""
        targets = [self.channel_state(channel)] if channel is not None else list(self.channels.values())
        t = self._ts(ts)
        released = []
        for cs in targets:
            rec = cs.release_active(t)
            if rec is not None:
                released.append(rec)
        self.metrics["forced_releases"] += len(released)
        self._after_update()
        return released

    # --- Continuous controllers (hardware path: clamp) ---
    def on_pitch_bend(self, channel: int, value: int) -> bool:
        return self._count_clamp(self.channel_state(channel).set_pitch_bend(value))

    def on_channel_pressure(self, channel: int, value: int) -> bool:
        return self._count_clamp(self.channel_state(channel).set_channel_pressure(value))

    def on_timbre(self, channel: int, value: int) -> bool:
        return self._count_clamp(self.channel_state(channel).set_timbre(value))

    def on_pitch_bend_sensitivity(self, channel: int, semitones: int, cents: int = 0) -> bool:
        """Apply RPN 0. On a member channel the range is applied zone-wide."""
        ch = check_channel(channel)
        zone = self.zone_of(ch)
        if zone is not None and zone.is_member(ch):
            clamped = False
            for m in zone.member_channels:
                clamped = self.channels[m].set_pitch_bend_sensitivity(semitones, cents) or clamped
            # Zone range stays within what a zone can be configured with
            zone.pitch_bend_range = min(self.channels[ch].pitch_bend_sensitivity, MAX_BEND_RANGE)
        else:
            clamped = self.channels[ch].set_pitch_bend_sensitivity(semitones, cents)
        return self._count_clamp(clamped)

    # --- RPN sequencing ---
    def begin_rpn(self, channel: int, param: int) -> None:
        """Select an RPN; any previously pending selection is abandoned."""
        ch = check_channel(channel)
        if int(param) == RPN_NULL:
            self._pending_rpn.pop(ch, None)
        else:
            self._pending_rpn[ch] = int(param)

    def begin_nrpn(self, channel: int, param: int) -> None:
        # NRPNs are not tracked; selecting one abandons a pending RPN
        self._pending_rpn.pop(check_channel(channel), None)

    def apply_rpn_value(self, channel: int, coarse: int, fine: int = 0, ts: Optional[float] = None) -> bool:
        """Complete the pending RPN on channel. Returns False when nothing was applied."""
        ch = check_channel(channel)
        param = self._pending_rpn.get(ch)
        if param is None:
            return False
        if param == RPN_PITCH_BEND_SENSITIVITY:
            self.on_pitch_bend_sensitivity(ch, coarse, fine)
        elif param == RPN_MPE_CONFIGURATION and ch in (1, 16):
            self.on_mpe_configuration(ch, coarse, ts=ts)
        else:
            self._pending_rpn.pop(ch, None)
            return False
        self._pending_rpn.pop(ch, None)
        self._after_update()
        return True

    # --- Zones ---
    def on_zone_reconfigure(self, manager_channel: int, member_count: int,
                            pitch_bend_range: int = DEFAULT_MEMBER_BEND_RANGE, ts: Optional[float] = None) -> Zone:
        """Resize a zone; raises ZoneOverlap if it would collide with the other zone."""
        zone = self._zones[zone_kind_for_manager(check_channel(manager_channel))]
        other = self._other(zone)
        self._zone_changed(zone.configure(self.channels, member_count, pitch_bend_range, other, self._ts(ts)))
        return zone

    def on_mpe_configuration(self, manager_channel: int, member_count: int, ts: Optional[float] = None) -> Zone:
        """Apply an MPE Configuration Message as received from the wire.

        The other zone gives way: it shrinks until it no longer overlaps,
        and is deactivated if no member channel remains.
        """
        zone = self._zones[zone_kind_for_manager(check_channel(manager_channel))]
        other = self._other(zone)
        count = max(0, min(15, int(member_count)))
        if count != int(member_count):
            self.metrics["clamped"] += 1
        t = self._ts(ts)
        bend_range = zone.pitch_bend_range if zone.is_active else DEFAULT_MEMBER_BEND_RANGE
        bend_range = min(bend_range, MAX_BEND_RANGE)
        new_channels = zone.channels_for(count)
        shrink = other.is_active and bool(other.channels & new_channels)
        # Both zones are validated before either is touched
        zone.validate(count, bend_range, None)
        if shrink:
            other_count = other.fit_count(new_channels)
            other.validate(other_count, other.pitch_bend_range, None)
            self._zone_changed(other.configure(self.channels, other_count, other.pitch_bend_range, None, t))
        self._zone_changed(zone.configure(self.channels, count, bend_range, other, t))
        return zone

    # --- Dispatch ---
    def dispatch(self, event: Event) -> Any:
        """Route one decoded event to its update rule and return that rule's result."""
        self.metrics["events"] += 1
        if isinstance(event, NoteOn):
            if event.force:
                return self.force_note_on(event.channel, event.note, event.velocity, event.ts)
            return self.on_note_on(event.channel, event.note, event.velocity, event.ts)
        elif isinstance(event, NoteOff):
            return self.on_note_off(event.channel, event.note, event.velocity, event.ts)
        elif isinstance(event, PitchBend):
            return self.on_pitch_bend(event.channel, event.value)
        elif isinstance(event, ChannelPressure):
            return self.on_channel_pressure(event.channel, event.value)
        elif isinstance(event, Timbre):
            return self.on_timbre(event.channel, event.value)
        elif isinstance(event, PitchBendSensitivity):
            return self.on_pitch_bend_sensitivity(event.channel, event.semitones, event.cents)
        elif isinstance(event, RPNSelect):
            return self.begin_rpn(event.channel, event.param)
        elif isinstance(event, NRPNSelect):
            return self.begin_nrpn(event.channel, event.param)
        elif isinstance(event, RPNValue):
            return self.apply_rpn_value(event.channel, event.coarse, event.fine, event.ts)
        elif isinstance(event, ZoneReconfigure):
            return self.on_zone_reconfigure(event.manager_channel, event.member_count, event.pitch_bend_range,
                                            event.ts)
        elif isinstance(event, AllNotesOff):
            return self.all_notes_off(event.channel, event.ts)
        raise TypeError(f"unsupported event {event!r}")

    # --- Invariants ---
    def check_invariants(self) -> None:
        seen: Dict[int, str] = {}
        for z in self._zones.values():
            for ch in z.channels:
                if ch in seen:
                    raise InvariantError(f"channel {ch} belongs to both {seen[ch]} and {z.kind} zones")
                seen[ch] = z.kind
            if z.is_active and len(z.channels) != z.member_count + 1:
                raise InvariantError(f"{z.kind} zone channel count does not match member count")
        for ch, cs in self.channels.items():
            if cs.channel != ch:
                raise InvariantError(f"channel slot {ch} holds state for channel {cs.channel}")
            rec = cs.active_note
            if rec is not None and (rec.channel != ch or rec.released):
                raise InvariantError(f"channel {ch} holds foreign or released note {rec.key}")
            if rec is not None and any(r is rec for r in cs.released):
                raise InvariantError(f"note {rec.key} is both active and released")

    # --- Snapshots / metrics ---
    def get_metrics(self) -> Dict[str, int]:
        return dict(self.metrics)

    def get_state_snapshot(self) -> Dict[str, Any]:
        zones = []
        for z in (self.lower_zone, self.upper_zone):
            zones.append({
                "kind": z.kind,
                "active": z.is_active,
                "managerChannel": z.manager_channel,
                "memberChannels": list(z.member_channels),
                "pitchBendRange": z.pitch_bend_range,
            })
        channels = {}
        for ch, cs in self.channels.items():
            ent = cs.snapshot()
            ent["role"] = self.channel_role(ch)
            channels[ch] = ent
        return {
            "zones": zones,
            "channels": channels,
            "activeNotes": [r.as_dict() for r in self.active_notes()],
        }

    # --- Internals ---
    def _ts(self, ts: Optional[float]) -> float:
        return self.clock() if ts is None else ts

    def _other(self, zone: Zone) -> Zone:
        return self._zones[UPPER if zone.kind == LOWER else LOWER]

    def _count_clamp(self, clamped: bool) -> bool:
        if clamped:
            self.metrics["clamped"] += 1
        self._after_update()
        return clamped

    def _zone_changed(self, changed: Tuple[List[int], List[int]]) -> None:
        self.metrics["zone_changes"] += 1
        left, joined = changed
        # Channels that changed role drop any half-finished RPN
        for ch in left + joined:
            self._pending_rpn.pop(ch, None)
        self._after_update()

    def _after_update(self) -> None:
        if self.check_invariants_enabled:
            self.check_invariants()
