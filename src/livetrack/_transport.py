"""HTTP snapshot reads against the backing store's REST interface."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Protocol

import aiohttp

from livetrack._constants import SNAPSHOT_COLUMNS, USER_AGENT
from livetrack._redact import redact_for_log
from livetrack.config import TrackingConfig
from livetrack.exceptions import TrackingNotFoundError, TrackingTransportError

_logger = logging.getLogger(__name__)


class SnapshotSource(Protocol):
    """Structural point-read interface used by the tracker.

    Having a protocol here makes it easy to pass test doubles while keeping
    the production implementation (`RestSnapshotSource`) concrete.
    """

    async def fetch_snapshot(self, entity_id: str) -> dict[str, Any]:
        ...


class RestSnapshotSource:
    """Reads one row by id through a PostgREST-style endpoint."""

    def __init__(self, config: TrackingConfig, http_session: aiohttp.ClientSession) -> None:
        self._config = config
        self._http = http_session
        self._timeout = aiohttp.ClientTimeout(total=config.http_timeout)

    def _headers(self) -> dict[str, str]:
        return {
            "apikey": self._config.api_key,
            "authorization": f"Bearer {self._config.api_key}",
            "accept": "application/json",
            "user-agent": USER_AGENT,
        }

    async def fetch_snapshot(self, entity_id: str) -> dict[str, Any]:
        """Fetch the current row for *entity_id*.

        Raises
        ------
        TrackingNotFoundError
            No row matches the id.
        TrackingTransportError
            Network failure, non-200 status or a body that is not a JSON list.
        """
        endpoint = f"/rest/v1/{self._config.table}"
        url = f"{self._config.base_url.rstrip('/')}{endpoint}"
        params = {"id": f"eq.{entity_id}", "select": SNAPSHOT_COLUMNS}

        _logger.debug("GET %s params=%s", url, params)

        try:
            async with self._http.get(url, params=params, headers=self._headers(), timeout=self._timeout) as resp:
                text = await resp.text()
                if resp.status != 200:
                    raise TrackingTransportError(
                        f"HTTP {resp.status} from {endpoint}: {text[:200]}",
                        status_code=resp.status,
                        endpoint=endpoint,
                    )
        except TrackingTransportError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise TrackingTransportError(
                f"Request to {endpoint} failed: {exc!r}",
                endpoint=endpoint,
            ) from exc

        try:
            body = json.loads(text)
        except json.JSONDecodeError as exc:
            raise TrackingTransportError(
                f"Invalid JSON from {endpoint}: {text[:200]}",
                endpoint=endpoint,
            ) from exc

        if not isinstance(body, list):
            raise TrackingTransportError(
                f"Expected a list of rows from {endpoint}, got {type(body).__name__}",
                endpoint=endpoint,
            )
        if not body:
            raise TrackingNotFoundError(entity_id)

        row = body[0]
        if not isinstance(row, dict):
            raise TrackingTransportError(f"Row from {endpoint} is not an object", endpoint=endpoint)

        _logger.debug("Snapshot row entity=%s row=%s", entity_id, redact_for_log(row))
        return row
