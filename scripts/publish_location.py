#!/usr/bin/env python3
"""Publish a courier position for one order onto the change feed.

Stands in for the delivery-partner side when testing ``track_order.py``:
each call sends one ``UPDATE`` change record on ``<prefix>/<table>/<id>``.
"""

from __future__ import annotations

import argparse
import json
import sys
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

_repo = Path(__file__).resolve().parent.parent
_src = _repo / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

import paho.mqtt.publish as publish  # noqa: E402

from livetrack import OrderStatus, TrackingConfig, TrackingError  # noqa: E402


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Publish one order position update.")
    parser.add_argument("order_id", help="Order id.")
    parser.add_argument("latitude", type=float)
    parser.add_argument("longitude", type=float)
    parser.add_argument(
        "--status",
        default=OrderStatus.IN_TRANSIT.value,
        help="Order status to publish (default: in_transit).",
    )
    return parser.parse_args()


def build_change_record(config: TrackingConfig, order_id: str, lat: float, lon: float, status: str) -> dict[str, Any]:
    now = datetime.now(UTC).isoformat()
    return {
        "schema": "public",
        "table": config.table,
        "eventType": "UPDATE",
        "commit_timestamp": now,
        "new": {
            "id": order_id,
            "latitude": lat,
            "longitude": lon,
            "status": status,
            "updated_at": now,
        },
    }


def _main() -> int:
    args = _parse_args()
    try:
        config = TrackingConfig.from_env()
    except TrackingError as exc:
        print(f"[publish] {exc}", file=sys.stderr)
        return 2

    record = build_change_record(config, args.order_id, args.latitude, args.longitude, args.status)
    auth = None
    if config.mqtt_username:
        auth = {"username": config.mqtt_username, "password": config.mqtt_password}
    publish.single(
        config.topic_for(args.order_id),
        payload=json.dumps(record),
        qos=1,
        hostname=config.mqtt_host,
        port=config.mqtt_port,
        auth=auth,
        tls={} if config.mqtt_tls else None,
    )
    print(f"[publish] sent {record['new']} to {config.topic_for(args.order_id)}")
    return 0


if __name__ == "__main__":
    raise SystemExit(_main())
