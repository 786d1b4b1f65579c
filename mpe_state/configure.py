"""MPE zone setup done the recommended way.

These helpers hold no state of their own; they validate strictly (raising
OutOfRange instead of clamping) and then go through MPEState.
"""
from __future__ import annotations

from typing import List

from mpe_state.channel import DEFAULT_MEMBER_BEND_RANGE, MAX_BEND_RANGE
from mpe_state.errors import OutOfRange, check_channel
from mpe_state.events import (
    RPN_MPE_CONFIGURATION,
    RPN_NULL,
    RPN_PITCH_BEND_SENSITIVITY,
    Event,
    RPNSelect,
    RPNValue,
)
from mpe_state.state import MPEState
from mpe_state.zone import LOWER, MANAGER_CHANNELS, UPPER, ZoneSnapshot, zone_kind_for_manager


def _check_member_count(member_count: int) -> int:
    if not isinstance(member_count, int) or not 0 <= member_count <= 15:
        raise OutOfRange(f"member count must be an integer 0..15, got {member_count!r}")
    return member_count


def _check_bend_range(bend_range: int) -> int:
    if not isinstance(bend_range, int) or not 0 <= bend_range <= MAX_BEND_RANGE:
        raise OutOfRange(f"pitch bend range must be an integer 0..{MAX_BEND_RANGE}, got {bend_range!r}")
    return bend_range


def claim_zone(state: MPEState, manager_channel: int, member_count: int,
               bend_range: int = DEFAULT_MEMBER_BEND_RANGE) -> ZoneSnapshot:
    manager = check_channel(manager_channel)
    zone_kind_for_manager(manager)
    zone = state.on_zone_reconfigure(manager, _check_member_count(member_count), _check_bend_range(bend_range))
    return zone.snapshot()


def claim_lower_zone(state: MPEState, member_count: int, bend_range: int = DEFAULT_MEMBER_BEND_RANGE) -> ZoneSnapshot:
    return claim_zone(state, MANAGER_CHANNELS[LOWER], member_count, bend_range)


def claim_upper_zone(state: MPEState, member_count: int, bend_range: int = DEFAULT_MEMBER_BEND_RANGE) -> ZoneSnapshot:
    return claim_zone(state, MANAGER_CHANNELS[UPPER], member_count, bend_range)


def release_zone(state: MPEState, manager_channel: int) -> ZoneSnapshot:
    """Deactivate a zone; its channels are released and return to conventional defaults."""
    manager = check_channel(manager_channel)
    zone_kind_for_manager(manager)
    zone = state.on_zone_reconfigure(manager, 0, DEFAULT_MEMBER_BEND_RANGE)
    return zone.snapshot()


def apply_default_bend_range(state: MPEState, manager_channel: int,
                             bend_range: int = DEFAULT_MEMBER_BEND_RANGE) -> ZoneSnapshot:
    """Set the pitch bend range of every member channel of an active zone."""
    manager = check_channel(manager_channel)
    kind = zone_kind_for_manager(manager)
    zone = state.lower_zone if kind == LOWER else state.upper_zone
    bend_range = _check_bend_range(bend_range)
    if not zone.is_active:
        raise OutOfRange(f"{kind} zone is not active")
    state.on_pitch_bend_sensitivity(zone.member_channels[0], bend_range)
    return zone.snapshot()


def zone_setup_events(manager_channel: int, member_count: int,
                      bend_range: int = DEFAULT_MEMBER_BEND_RANGE) -> List[Event]:
    """Event sequence a sender emits to claim a zone.

    MPE Configuration Message on the manager, then the member pitch bend
    range on the first member, each closed with the null RPN. Feeding the
    list to MPEState.dispatch mirrors what a receiver ends up with.
    """
    manager = check_channel(manager_channel)
    zone_kind_for_manager(manager)
    count = _check_member_count(member_count)
    bend_range = _check_bend_range(bend_range)
    events: List[Event] = [
        RPNSelect(manager, RPN_MPE_CONFIGURATION),
        RPNValue(manager, count, 0),
        RPNSelect(manager, RPN_NULL),
    ]
    if count:
        first_member = 2 if manager == 1 else 15
        events += [
            RPNSelect(first_member, RPN_PITCH_BEND_SENSITIVITY),
            RPNValue(first_member, bend_range, 0),
            RPNSelect(first_member, RPN_NULL),
        ]
    return events
