"""Decoded MIDI events understood by MPEState.dispatch.

One frozen dataclass per message kind. Channels are 1..16; timestamps are
optional and fall back to the state's clock.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Union


RPN_PITCH_BEND_SENSITIVITY = 0
RPN_MPE_CONFIGURATION = 6
RPN_NULL = 0x3FFF


@dataclass(frozen=True)
class NoteOn:
    channel: int
    note: int
    velocity: int
    ts: Optional[float] = None
    force: bool = False


@dataclass(frozen=True)
class NoteOff:
    channel: int
    note: int
    velocity: int = 0
    ts: Optional[float] = None


@dataclass(frozen=True)
class PitchBend:
    channel: int
    value: int  # signed, -8192..8191


@dataclass(frozen=True)
class ChannelPressure:
    channel: int
    value: int


@dataclass(frozen=True)
class Timbre:
    channel: int
    value: int  # CC74


@dataclass(frozen=True)
class PitchBendSensitivity:
    channel: int
    semitones: int
    cents: int = 0


@dataclass(frozen=True)
class RPNSelect:
    channel: int
    param: int  # (MSB << 7) | LSB


@dataclass(frozen=True)
class NRPNSelect:
    channel: int
    param: int


@dataclass(frozen=True)
class RPNValue:
    channel: int
    coarse: int
    fine: int = 0
    ts: Optional[float] = None


@dataclass(frozen=True)
class ZoneReconfigure:
    manager_channel: int
    member_count: int
    pitch_bend_range: int = 48
    ts: Optional[float] = None


@dataclass(frozen=True)
class AllNotesOff:
    channel: Optional[int] = None
    ts: Optional[float] = None


Event = Union[
    NoteOn,
    NoteOff,
    PitchBend,
    ChannelPressure,
    Timbre,
    PitchBendSensitivity,
    RPNSelect,
    NRPNSelect,
    RPNValue,
    ZoneReconfigure,
    AllNotesOff,
]
