from __future__ import annotations

import argparse
import signal
import threading

from mpe_state.configure import claim_lower_zone, claim_upper_zone
from mpe_state.midi_in import MidoStateInput
from mpe_state.notes import DEFAULT_RELEASED_CAPACITY
from mpe_state.state import MPEState
from mpe_state.ws_server import start_ws_thread


def _describe(ev) -> str:
    return f"{type(ev).__name__} " + " ".join(f"{k}={v}" for k, v in vars(ev).items() if v is not None)


def main():
    ap = argparse.ArgumentParser(description="Track MPE state from a MIDI input port")
    ap.add_argument("--port", help="Substring to match MIDI input port")
    ap.add_argument("--lower", type=int, default=0, help="Pre-claim a lower zone with N member channels")
    ap.add_argument("--upper", type=int, default=0, help="Pre-claim an upper zone with N member channels")
    ap.add_argument("--bend-range", type=int, default=48)
    ap.add_argument("--capacity", type=int, default=DEFAULT_RELEASED_CAPACITY, help="Released-note history per channel")
    ap.add_argument("--steal", action="store_true", help="Release held note on busy-channel note-on")
    ap.add_argument("--ws-port", type=int, help="Serve state snapshots on ws://127.0.0.1:PORT")
    ap.add_argument("--quiet", action="store_true")
    args = ap.parse_args()

    state = MPEState(released_capacity=args.capacity)
    if args.lower:
        print(f"[monitor] lower zone: {claim_lower_zone(state, args.lower, args.bend_range)}")
    if args.upper:
        print(f"[monitor] upper zone: {claim_upper_zone(state, args.upper, args.bend_range)}")

    on_change = None if args.quiet else (lambda ev: print(f"[monitor] {_describe(ev)}", flush=True))
    inp = MidoStateInput(state, steal=args.steal, verbose=not args.quiet, on_change=on_change)
    inp.open(args.port)

    if args.ws_port:
        start_ws_thread(inp.snapshot, "127.0.0.1", args.ws_port)

    done = threading.Event()

    def shutdown(*_):
        done.set()

    signal.signal(signal.SIGINT, shutdown)
    signal.signal(signal.SIGTERM, shutdown)
    done.wait()
    inp.close()
    snap = inp.snapshot()
    print(f"[monitor] metrics: {snap['metrics']}")
    if snap["errors"]:
        print(f"[monitor] errors: {snap['errors']}")


if __name__ == "__main__":
    main()
