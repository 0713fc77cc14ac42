#!/usr/bin/env python3
"""Watch one order live and log every map frame.

Configuration is read from ``LIVETRACK_*`` environment variables
(see :meth:`livetrack.TrackingConfig.from_env`).

Example::

    LIVETRACK_URL=https://<project>.supabase.co LIVETRACK_API_KEY=... \\
    LIVETRACK_MQTT_HOST=broker.example.com python scripts/track_order.py order-1
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path

_repo = Path(__file__).resolve().parent.parent
_src = _repo / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

from livetrack import (  # noqa: E402
    LoggingMapRenderer,
    TrackingClient,
    TrackingConfig,
    TrackingError,
    TrackingHandle,
    TrackingNotFoundError,
)

_LOG = logging.getLogger("track_order")


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Follow one order's position and status.")
    parser.add_argument("order_id", help="Order id to track.")
    parser.add_argument(
        "--duration",
        type=int,
        default=0,
        help="Maximum runtime in seconds (0 = run until Ctrl+C).",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logs.",
    )
    return parser.parse_args()


def _on_status(handle: TrackingHandle) -> None:
    if handle.last_error is not None and handle.status == "channel_error":
        _LOG.warning("tracking %s: %s (%s)", handle.entity_id, handle.status, handle.last_error)
    else:
        _LOG.info("tracking %s: %s", handle.entity_id, handle.status)


async def _run(config: TrackingConfig, order_id: str, duration: int) -> int:
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(signum, stop_event.set)

    async with TrackingClient(config, renderer=LoggingMapRenderer(_LOG), on_status_change=_on_status) as client:
        try:
            handle = await client.observe_entity(order_id)
        except TrackingNotFoundError:
            _LOG.error("order %s does not exist", order_id)
            return 1
        except TrackingError as exc:
            _LOG.error("could not load order %s: %s", order_id, exc)
            return 2

        try:
            if duration > 0:
                try:
                    await asyncio.wait_for(stop_event.wait(), duration)
                except TimeoutError:
                    _LOG.info("reached --duration=%ss, stopping", duration)
            else:
                await stop_event.wait()
        finally:
            handle.stop()

        state = handle.current_state
        if state is not None:
            _LOG.info("last known: position=%s status=%s updated_at=%s", state.position, state.status, state.updated_at)
    return 0


def _main() -> int:
    args = _parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )
    try:
        config = TrackingConfig.from_env()
    except TrackingError as exc:
        print(f"[track_order] {exc}", file=sys.stderr)
        return 2
    return asyncio.run(_run(config, args.order_id, args.duration))


if __name__ == "__main__":
    raise SystemExit(_main())
