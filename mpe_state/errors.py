from __future__ import annotations


class MPEError(Exception):
    pass


class OutOfRange(MPEError, ValueError):
    """A value outside its MIDI domain on a path that does not clamp."""


class ChannelBusy(MPEError):
    def __init__(self, channel: int, held_note: int, note: int) -> None:
        super().__init__(f"channel {channel}: note {note} rejected, note {held_note} still active")
        self.channel = channel
        self.held_note = held_note
        self.note = note


class NoteMismatch(MPEError):
    def __init__(self, channel: int, note: int, active_note: int | None) -> None:
        if active_note is None:
            msg = f"channel {channel}: note-off {note} with no active note"
        else:
            msg = f"channel {channel}: note-off {note} does not match active note {active_note}"
        super().__init__(msg)
        self.channel = channel
        self.note = note
        self.active_note = active_note


class ZoneOverlap(MPEError):
    pass


class InvalidChannel(MPEError, IndexError):
    pass


class InvariantError(MPEError):
    """Internal state broke an invariant; always a bug, never bad input."""


def check_channel(channel: int) -> int:
    """Return channel as int, raising InvalidChannel outside 1..16."""
    try:
        ch = int(channel)
    except (TypeError, ValueError):
        raise InvalidChannel(f"channel must be an integer 1..16, got {channel!r}") from None
    if not 1 <= ch <= 16:
        raise InvalidChannel(f"channel must be 1..16, got {ch}")
    return ch
