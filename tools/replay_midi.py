from __future__ import annotations

import argparse
import json

from mpe_state.midi_in import MidoStateInput
from mpe_state.state import MPEState


def replay(path: str, steal: bool = False, verbose: bool = False) -> MidoStateInput:
    """Feed every channel message of a .mid file through a fresh state.

    Timestamps are seconds from the start of the file.
    """
    import mido

    inp = MidoStateInput(MPEState(), steal=steal, verbose=verbose)
    now = 0.0
    for msg in mido.MidiFile(path):
        now += msg.time
        if msg.is_meta:
            continue
        inp.handle(msg, ts=now)
    return inp


def main():
    ap = argparse.ArgumentParser(description="Replay a MIDI file through the MPE state tracker")
    ap.add_argument("midi_file")
    ap.add_argument("--steal", action="store_true")
    ap.add_argument("--verbose", action="store_true")
    ap.add_argument("--json", action="store_true", help="Print the full final snapshot as JSON")
    args = ap.parse_args()

    inp = replay(args.midi_file, steal=args.steal, verbose=args.verbose)
    snap = inp.snapshot()
    if args.json:
        print(json.dumps(snap, indent=2))
        return
    for z in snap["zones"]:
        if z["active"]:
            print(f"[replay] {z['kind']} zone: members {z['memberChannels']} bend ±{z['pitchBendRange']}")
    print(f"[replay] active notes: {len(snap['activeNotes'])}")
    print(f"[replay] metrics: {snap['metrics']}")
    if snap["errors"]:
        print(f"[replay] errors: {snap['errors']}")


if __name__ == "__main__":
    main()
