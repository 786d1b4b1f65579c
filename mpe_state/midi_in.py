from __future__ import annotations

import threading
from typing import Any, Callable, Dict, List, Optional

from mpe_state.errors import ChannelBusy, MPEError
from mpe_state.events import (
    RPN_NULL,
    AllNotesOff,
    ChannelPressure,
    Event,
    NoteOff,
    NoteOn,
    NRPNSelect,
    PitchBend,
    RPNSelect,
    RPNValue,
    Timbre,
)
from mpe_state.state import MPEState


CC_DATA_ENTRY_MSB = 6
CC_DATA_ENTRY_LSB = 38
CC_TIMBRE = 74
CC_NRPN_LSB = 98
CC_NRPN_MSB = 99
CC_RPN_LSB = 100
CC_RPN_MSB = 101
CC_ALL_SOUND_OFF = 120
CC_ALL_NOTES_OFF = 123


class _ParamSelect:
    """Per-channel RPN/NRPN selector bytes as seen on the wire."""

    def __init__(self) -> None:
        self.kind: Optional[str] = None  # 'rpn' | 'nrpn'
        self.msb: Optional[int] = None
        self.lsb: Optional[int] = None
        self.coarse: Optional[int] = None

    @property
    def param(self) -> Optional[int]:
        if self.msb is None or self.lsb is None:
            return None
        return (self.msb << 7) | self.lsb


class MidoDecoder:
    """Turn decoded mido messages into MPEState events.

    mido channels are 0..15; events use 1..16. Every data entry (CC6, or CC38
    after CC6) re-selects the RPN so repeated entries and coarse+fine
    values all reach the state.
    """

    def __init__(self) -> None:
        self._sel: Dict[int, _ParamSelect] = {}
        self.dropped: int = 0

    def decode(self, msg: Any, ts: Optional[float] = None) -> List[Event]:
        t = getattr(msg, "type", None)
        if not hasattr(msg, "channel"):
            self.dropped += 1
            return []
        ch = int(msg.channel) + 1
        if t == "note_on":
            if int(msg.velocity) == 0:
                return [NoteOff(ch, int(msg.note), 0, ts)]
            return [NoteOn(ch, int(msg.note), int(msg.velocity), ts)]
        if t == "note_off":
            return [NoteOff(ch, int(msg.note), int(msg.velocity), ts)]
        if t == "pitchwheel":
            return [PitchBend(ch, int(msg.pitch))]
        if t == "aftertouch":
            return [ChannelPressure(ch, int(msg.value))]
        if t == "control_change":
            return self._decode_cc(ch, int(msg.control), int(msg.value), ts)
        self.dropped += 1
        return []

    def _decode_cc(self, ch: int, control: int, value: int, ts: Optional[float]) -> List[Event]:
        if control == CC_TIMBRE:
            return [Timbre(ch, value)]
        if control in (CC_ALL_NOTES_OFF, CC_ALL_SOUND_OFF):
            return [AllNotesOff(ch, ts)]
        sel = self._sel.setdefault(ch, _ParamSelect())
        if control in (CC_RPN_MSB, CC_RPN_LSB):
            if sel.kind != "rpn":
                sel.kind, sel.msb, sel.lsb = "rpn", None, None
            if control == CC_RPN_MSB:
                sel.msb = value
            else:
                sel.lsb = value
            sel.coarse = None
            if sel.param is None:
                return []
            return [RPNSelect(ch, sel.param)]
        if control in (CC_NRPN_MSB, CC_NRPN_LSB):
            if sel.kind != "nrpn":
                sel.kind, sel.msb, sel.lsb = "nrpn", None, None
            if control == CC_NRPN_MSB:
                sel.msb = value
            else:
                sel.lsb = value
            sel.coarse = None
            if sel.param is None:
                return []
            return [NRPNSelect(ch, sel.param)]
        if control == CC_DATA_ENTRY_MSB:
            if sel.kind != "rpn" or sel.param is None or sel.param == RPN_NULL:
                self.dropped += 1
                return []
            sel.coarse = value
            # The selection holds until the null RPN, so each entry re-selects
            return [RPNSelect(ch, sel.param), RPNValue(ch, value, 0, ts)]
        if control == CC_DATA_ENTRY_LSB:
            if sel.kind != "rpn" or sel.param is None or sel.param == RPN_NULL or sel.coarse is None:
                self.dropped += 1
                return []
            return [RPNSelect(ch, sel.param), RPNValue(ch, sel.coarse, value, ts)]
        self.dropped += 1
        return []


class MidoStateInput:
    """Feed mido messages into an MPEState under a lock.

    Wire errors (busy channel, stray note-off) are counted rather than
    raised, since a live port cannot be asked to resend. With ``steal`` a
    note-on on a busy channel releases the held note instead.
    """

    def __init__(self, state: MPEState, steal: bool = False, verbose: bool = False,
                 on_change: Optional[Callable[[Event], None]] = None) -> None:
        self.state = state
        self.steal = steal
        self.verbose = verbose
        self.on_change = on_change
        self.decoder = MidoDecoder()
        self.lock = threading.RLock()
        self.errors: Dict[str, int] = {}
        self.port = None

    def handle(self, msg: Any, ts: Optional[float] = None) -> None:
        events = self.decoder.decode(msg, ts)
        with self.lock:
            for ev in events:
                try:
                    self.state.dispatch(ev)
                except ChannelBusy as e:
                    if not self.steal:
                        self._note_error(e)
                        continue
                    self.state.force_note_on(e.channel, e.note, ev.velocity, ev.ts)
                except MPEError as e:
                    self._note_error(e)
                    continue
                if self.on_change:
                    self.on_change(ev)

    def _note_error(self, err: MPEError) -> None:
        name = type(err).__name__
        self.errors[name] = self.errors.get(name, 0) + 1
        if self.verbose:
            print(f"[midi-in] {name}: {err}", flush=True)

    def snapshot(self) -> Dict[str, Any]:
        with self.lock:
            snap = self.state.get_state_snapshot()
            snap["metrics"] = dict(self.state.get_metrics(), decoderDropped=self.decoder.dropped)
            snap["errors"] = dict(self.errors)
            return snap

    def open(self, name_filter: Optional[str] = None):
        self.port = open_mido_input(name_filter, callback=self.handle)
        return self.port

    def close(self) -> None:
        if self.port is not None:
            self.port.close()
            self.port = None


def _dummy_in():
    class _DummyIn:
        name = None

        def close(self):
            pass
    return _DummyIn()


def open_mido_input(name_filter: Optional[str] = None, callback=None):
    """Open a mido input port with safe fallbacks.

    Returns a dummy object with `.close()` when mido or its backend is
    unavailable, no port matches, or system MIDI access fails (CI,
    sandboxed runners).
    """
    try:
        import mido
    except ImportError:
        print("[midi-in] mido not installed; using dummy input", flush=True)
        return _dummy_in()

    try:
        names = mido.get_input_names()
    except Exception as e:
        # Backend missing or system MIDI inaccessible
        print(f"[midi-in] cannot list inputs: {e}", flush=True)
        return _dummy_in()
    if name_filter:
        names = [n for n in names if name_filter in n]
    if not names:
        print(f"[midi-in] no input port matching {name_filter!r}", flush=True)
        return _dummy_in()
    try:
        port = mido.open_input(names[0], callback=callback)
    except Exception as e:
        print(f"[midi-in] could not open {names[0]!r}: {e}", flush=True)
        return _dummy_in()
    print(f"[midi-in] listening on {names[0]!r}", flush=True)
    return port
