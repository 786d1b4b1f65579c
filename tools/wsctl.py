from __future__ import annotations

import argparse
import asyncio
import json


async def run(url: str, frames: int, channel: int | None):
    import websockets  # type: ignore

    async with websockets.connect(url) as ws:
        await ws.send(json.dumps({"type": "getState"}))
        for _ in range(frames):
            try:
                raw = await asyncio.wait_for(ws.recv(), timeout=2.0)
            except asyncio.TimeoutError:
                break
            msg = json.loads(raw)
            if channel is not None and msg.get("type") == "state":
                print(json.dumps(msg["payload"]["channels"].get(str(channel)), indent=2))
            else:
                print(raw)


def main():
    ap = argparse.ArgumentParser(description="Print MPE state frames from the monitor's WS server")
    ap.add_argument("--url", default="ws://127.0.0.1:8765")
    ap.add_argument("--frames", type=int, default=3)
    ap.add_argument("--channel", type=int, help="Only print this channel (1..16)")
    args = ap.parse_args()
    asyncio.run(run(args.url, args.frames, args.channel))


if __name__ == "__main__":
    main()
