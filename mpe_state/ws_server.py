from __future__ import annotations

import asyncio
import json
import threading
import time
from typing import Any, Callable, Dict, Optional, Set


SnapshotSource = Callable[[], Dict[str, Any]]


async def serve_state_ws(get_state: SnapshotSource, host: str = "127.0.0.1", port: int = 8765,
                         interval: float = 0.5) -> None:
    """Serve MPE state snapshots over WebSocket until cancelled.

    Each client receives a ``state`` frame on connect, on every
    ``{"type": "getState"}`` request, and every ``interval`` seconds.
    Requires the 'websockets' package.
    """
    try:
        import websockets  # type: ignore
    except ImportError:
        print("[ws] websockets not installed; cannot serve state")
        return

    clients: Set[Any] = set()

    def frame() -> str:
        return json.dumps({"type": "state", "ts": time.time(), "payload": get_state()})

    async def broadcast_task():
        while True:
            await asyncio.sleep(interval)
            if not clients:
                continue
            msg = frame()
            await asyncio.gather(*[c.send(msg) for c in list(clients)], return_exceptions=True)

    async def handler(ws):
        clients.add(ws)
        try:
            await ws.send(frame())
            async for raw in ws:
                try:
                    req = json.loads(raw)
                except ValueError:
                    await ws.send(json.dumps({"type": "error", "error": "invalid json"}))
                    continue
                if isinstance(req, dict) and req.get("type") == "getState":
                    await ws.send(frame())
                else:
                    await ws.send(json.dumps({"type": "error", "error": "unknown request"}))
        finally:
            clients.discard(ws)

    async with websockets.serve(handler, host, port):
        print(f"[ws] serving MPE state on ws://{host}:{port}", flush=True)
        task = asyncio.create_task(broadcast_task())
        try:
            await asyncio.Future()
        finally:
            task.cancel()


def start_ws_thread(get_state: SnapshotSource, host: str = "127.0.0.1", port: int = 8765,
                    interval: float = 0.5) -> Optional[threading.Thread]:
    """Run serve_state_ws on a daemon thread; None if 'websockets' is missing."""
    try:
        import websockets  # type: ignore  # noqa: F401
    except ImportError:
        print("[ws] websockets not installed; skipping WS server")
        return None

    th = threading.Thread(target=lambda: asyncio.run(serve_state_ws(get_state, host, port, interval)), daemon=True)
    th.start()
    return th
