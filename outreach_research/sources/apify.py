"""Apify REST client: start an actor run, wait for it, read its dataset."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

import httpx

from outreach_research.models import ScrapeRun

logger = logging.getLogger(__name__)

APIFY_BASE_URL = "https://api.apify.com/v2"

# Apify caps a single waitForFinish long-poll at 60 seconds
_MAX_WAIT_PER_POLL = 60
_TERMINAL_STATUSES = {"SUCCEEDED", "FAILED", "TIMED-OUT", "ABORTED"}


class ApifyError(Exception):
    """Raised when an actor run cannot be started, fails, or exceeds its wait bound."""


class ApifyClient:
    """Async client for the Apify actor/dataset API."""

    def __init__(
        self,
        token: str,
        base_url: str = APIFY_BASE_URL,
        poll_interval: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.token = token
        self.base_url = base_url.rstrip("/")
        self.poll_interval = poll_interval
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers={
                    "Authorization": f"Bearer {self.token}",
                    "Content-Type": "application/json",
                },
                timeout=httpx.Timeout(_MAX_WAIT_PER_POLL + 15, connect=15),
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> ApifyClient:
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        client = await self._get_client()
        try:
            r = await client.request(method, path, **kwargs)
            r.raise_for_status()
            return r.json()
        except httpx.HTTPStatusError as e:
            raise ApifyError(f"Apify HTTP {e.response.status_code} for {path}") from e
        except httpx.TimeoutException as e:
            raise ApifyError(f"Apify request timed out for {path}") from e
        except httpx.HTTPError as e:
            raise ApifyError(f"Apify request failed for {path}: {e}") from e

    async def call_actor(
        self,
        actor_id: str,
        run_input: dict[str, Any],
        timeout: float = 300,
    ) -> ScrapeRun:
        """Run an actor to completion and return its dataset items.

        The whole call (start, wait, dataset read) is bounded by ``timeout``.
        """
        try:
            return await asyncio.wait_for(
                self._call_actor(actor_id, run_input, timeout),
                timeout=timeout,
            )
        except asyncio.TimeoutError as e:
            raise ApifyError(f"Actor {actor_id} did not finish within {timeout:.0f}s") from e

    async def _call_actor(
        self,
        actor_id: str,
        run_input: dict[str, Any],
        timeout: float,
    ) -> ScrapeRun:
        deadline = time.monotonic() + timeout
        # Actor ids use "user/name" in the UI but "user~name" in URLs
        actor_path = actor_id.replace("/", "~")

        started = await self._request("POST", f"/acts/{actor_path}/runs", json=run_input)
        run = started.get("data") or {}
        run_id = run.get("id", "")
        if not run_id:
            raise ApifyError(f"Actor {actor_id} returned no run id")
        logger.debug("Started actor %s run %s", actor_id, run_id)

        while run.get("status") not in _TERMINAL_STATUSES:
            remaining = deadline - time.monotonic()
            wait_secs = max(1, min(_MAX_WAIT_PER_POLL, int(remaining)))
            polled = await self._request(
                "GET", f"/actor-runs/{run_id}", params={"waitForFinish": wait_secs},
            )
            run = polled.get("data") or run
            if run.get("status") not in _TERMINAL_STATUSES:
                await asyncio.sleep(self.poll_interval)

        status = run.get("status")
        if status != "SUCCEEDED":
            raise ApifyError(f"Actor {actor_id} run {run_id} ended with status {status}")

        dataset_id = run.get("defaultDatasetId", "")
        items = await self._request(
            "GET", f"/datasets/{dataset_id}/items", params={"clean": "true", "format": "json"},
        )
        if not isinstance(items, list):
            raise ApifyError(f"Unexpected dataset payload for run {run_id}")

        logger.info("Actor %s run %s returned %d items", actor_id, run_id, len(items))
        return ScrapeRun(run_id=run_id, dataset_id=dataset_id, items=items)
