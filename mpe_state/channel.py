from __future__ import annotations

from typing import Any, Dict, Optional, Tuple

from mpe_state.errors import ChannelBusy, NoteMismatch, OutOfRange, check_channel
from mpe_state.notes import DEFAULT_RELEASED_CAPACITY, NoteRecord, ReleasedRing


PITCH_BEND_MIN = -8192
PITCH_BEND_MAX = 8191
DEFAULT_MEMBER_BEND_RANGE = 48
DEFAULT_CONVENTIONAL_BEND_RANGE = 2
DEFAULT_TIMBRE = 64
MAX_BEND_RANGE = 96
MAX_BEND_CENTS = 99


def _clamp(value: Any, lo: int, hi: int) -> Tuple[int, bool]:
    v = int(round(value))
    if v < lo:
        return lo, True
    if v > hi:
        return hi, True
    return v, False


def _check_note(note: Any) -> int:
    n = int(note)
    if not 0 <= n <= 127:
        raise OutOfRange(f"note number must be 0..127, got {n}")
    return n


class ChannelState:
    """Expression values and note lifecycle of one MIDI channel (1..16).

    Controller setters clamp out-of-range input and return True when they
    had to. Note calls raise instead of overwriting: a channel holds at most
    one active note.
    """

    def __init__(self, channel: int, bend_range: int = DEFAULT_CONVENTIONAL_BEND_RANGE,
                 released_capacity: int = DEFAULT_RELEASED_CAPACITY) -> None:
        self.channel = check_channel(channel)
        self.released = ReleasedRing(released_capacity)
        self.active_note: Optional[NoteRecord] = None
        self.pitch_bend: int = 0
        self.pitch_bend_sensitivity: int = int(bend_range)
        self.pitch_bend_sensitivity_cents: int = 0
        self.channel_pressure: int = 0
        self.timbre: int = DEFAULT_TIMBRE

    def __repr__(self) -> str:
        held = self.active_note.note if self.active_note else None
        return (f"ChannelState(channel={self.channel}, note={held}, bend={self.pitch_bend}, "
                f"range={self.pitch_bend_sensitivity}, pressure={self.channel_pressure}, timbre={self.timbre})")

    # --- Controllers ---
    def set_pitch_bend(self, value: int) -> bool:
        self.pitch_bend, clamped = _clamp(value, PITCH_BEND_MIN, PITCH_BEND_MAX)
        return clamped

    def set_pitch_bend_sensitivity(self, semitones: int, cents: int = 0) -> bool:
        st, c1 = _clamp(semitones, 0, 127)
        ct, c2 = _clamp(cents, 0, MAX_BEND_CENTS)
        self.pitch_bend_sensitivity = st
        self.pitch_bend_sensitivity_cents = ct
        return c1 or c2

    def set_channel_pressure(self, value: int) -> bool:
        self.channel_pressure, clamped = _clamp(value, 0, 127)
        return clamped

    def set_timbre(self, value: int) -> bool:
        self.timbre, clamped = _clamp(value, 0, 127)
        return clamped

    @property
    def pitch_bend_normalized(self) -> float:
        # Asymmetric 14-bit range: full down is -1.0, full up is exactly 1.0
        if self.pitch_bend >= 0:
            return self.pitch_bend / PITCH_BEND_MAX
        return self.pitch_bend / -PITCH_BEND_MIN

    @property
    def pitch_bend_semitones(self) -> float:
        span = self.pitch_bend_sensitivity + self.pitch_bend_sensitivity_cents / 100.0
        return self.pitch_bend_normalized * span

    @property
    def pressure_normalized(self) -> float:
        return self.channel_pressure / 127.0

    @property
    def timbre_normalized(self) -> float:
        return self.timbre / 127.0

    # --- Notes ---
    def note_on(self, note: int, velocity: int, ts: float) -> NoteRecord:
        n = _check_note(note)
        if self.active_note is not None:
            raise ChannelBusy(self.channel, self.active_note.note, n)
        vel, _ = _clamp(velocity, 0, 127)
        self.active_note = NoteRecord(channel=self.channel, note=n, velocity_on=vel, start_ts=ts)
        return self.active_note

    def force_note_on(self, note: int, velocity: int, ts: float) -> Tuple[NoteRecord, Optional[NoteRecord]]:
        """Start a note, first releasing any held note into the ring.

        Returns (new_record, evicted_record_or_None).
        """
        n = _check_note(note)
        vel, _ = _clamp(velocity, 0, 127)
        evicted = self.release_active(ts)
        return self.note_on(n, vel, ts), evicted

    def note_off(self, note: int, velocity: int, ts: float) -> NoteRecord:
        n = _check_note(note)
        rec = self.active_note
        if rec is None or rec.note != n:
            raise NoteMismatch(self.channel, n, rec.note if rec else None)
        vel, _ = _clamp(velocity, 0, 127)
        self.active_note = None
        rec.release(vel, ts)
        self.released.push(rec)
        return rec

    def release_active(self, ts: float, velocity: int = 0) -> Optional[NoteRecord]:
        """Move the active note (if any) into the ring."""
        rec = self.active_note
        if rec is None:
            return None
        self.active_note = None
        rec.release(velocity, ts)
        self.released.push(rec)
        return rec

    def reset(self, bend_range: int, ts: float) -> Optional[NoteRecord]:
        """Release any held note, then restore controller defaults.

        The released ring is history and survives the reset.
        """
        rec = self.release_active(ts)
        self.pitch_bend = 0
        self.pitch_bend_sensitivity = int(bend_range)
        self.pitch_bend_sensitivity_cents = 0
        self.channel_pressure = 0
        self.timbre = DEFAULT_TIMBRE
        return rec

    def snapshot(self) -> Dict[str, Any]:
        return {
            "channel": self.channel,
            "pitchBend": self.pitch_bend,
            "pitchBendSensitivity": self.pitch_bend_sensitivity,
            "pitchBendSensitivityCents": self.pitch_bend_sensitivity_cents,
            "channelPressure": self.channel_pressure,
            "timbre": self.timbre,
            "activeNote": self.active_note.as_dict() if self.active_note else None,
            "released": [r.as_dict() for r in self.released],
        }
