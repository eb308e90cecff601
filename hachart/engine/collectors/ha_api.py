"""Async transport to Home Assistant: states, recorder history, statistics.

The fetch engines only depend on the ``HistoryAPI`` / ``StatisticsAPI``
protocols; ``HAClient`` is the aiohttp implementation. Failures propagate
to the caller, nothing here retries.
"""

import itertools
import logging
from typing import Any, Protocol, runtime_checkable

import aiohttp

from hachart.engine.config import HAConfig

logger = logging.getLogger(__name__)


@runtime_checkable
class HistoryAPI(Protocol):
    async def query_history_period(
        self,
        start_iso: str,
        end_iso: str,
        entity_ids_csv: str,
        minimal_response: bool = False,
    ) -> list[list[dict[str, Any]]]: ...


@runtime_checkable
class StatisticsAPI(Protocol):
    async def query_statistics(
        self,
        start_iso: str,
        end_iso: str,
        statistic_ids: list[str],
        period: str,
        types: list[str],
    ) -> dict[str, list[dict[str, Any]]]: ...


class HAClientError(RuntimeError):
    """Home Assistant returned an error response."""


class HAClient:
    """Shared-session aiohttp client for the HA REST and WebSocket APIs."""

    def __init__(self, ha_config: HAConfig, session: aiohttp.ClientSession | None = None):
        self.config = ha_config
        self._session = session
        self._owns_session = session is None
        self._msg_ids = itertools.count(1)

    @property
    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.config.token}"}

    @property
    def _timeout(self) -> aiohttp.ClientTimeout:
        return aiohttp.ClientTimeout(total=self.config.timeout)

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def _get_json(self, path: str, params: dict[str, str] | None = None) -> Any:
        session = self._get_session()
        url = f"{self.config.url}{path}"
        async with session.get(url, headers=self._headers, params=params, timeout=self._timeout) as resp:
            if resp.status != 200:
                body = await resp.text()
                raise HAClientError(f"GET {path} returned {resp.status}: {body[:200]}")
            return await resp.json()

    async def fetch_states(self) -> list[dict[str, Any]]:
        """All entity states from ``GET /api/states``."""
        states = await self._get_json("/api/states")
        logger.debug("Fetched %d states from %s", len(states), self.config.url)
        return states

    async def query_history_period(
        self,
        start_iso: str,
        end_iso: str,
        entity_ids_csv: str,
        minimal_response: bool = False,
    ) -> list[list[dict[str, Any]]]:
        """Recorder history for ``[start_iso, end_iso]``.

        HA keeps only the first of repeated ``filter_entity_id`` params, so
        all ids travel in one comma-separated value.
        """
        params = {"end_time": end_iso, "filter_entity_id": entity_ids_csv}
        if minimal_response:
            params["minimal_response"] = "1"
        hist = await self._get_json(f"/api/history/period/{start_iso}", params=params)
        logger.debug("History %s..%s for %s: %d arrays", start_iso, end_iso, entity_ids_csv, len(hist or []))
        return hist or []

    async def query_statistics(
        self,
        start_iso: str,
        end_iso: str,
        statistic_ids: list[str],
        period: str,
        types: list[str],
    ) -> dict[str, list[dict[str, Any]]]:
        """Long-term statistics via ``recorder/statistics_during_period``."""
        return await self.call_ws(
            {
                "type": "recorder/statistics_during_period",
                "start_time": start_iso,
                "end_time": end_iso,
                "statistic_ids": statistic_ids,
                "period": period,
                "types": types,
            }
        ) or {}

    async def call_ws(self, command: dict[str, Any]) -> Any:
        """Run one WebSocket command: auth handshake, send, await its result."""
        session = self._get_session()
        async with session.ws_connect(self.config.ws_url, timeout=self.config.timeout) as ws:
            # 1. Wait for auth_required
            msg = await ws.receive_json()
            if msg.get("type") != "auth_required":
                raise HAClientError(f"Unexpected WS message: {msg}")

            # 2. Authenticate
            await ws.send_json({"type": "auth", "access_token": self.config.token})
            auth_resp = await ws.receive_json()
            if auth_resp.get("type") != "auth_ok":
                raise HAClientError(f"WS auth failed: {auth_resp.get('message', auth_resp)}")

            # 3. Send command and wait for the matching result
            cmd_id = next(self._msg_ids)
            await ws.send_json({"id": cmd_id, **command})
            while True:
                resp = await ws.receive_json()
                if resp.get("id") != cmd_id or resp.get("type") != "result":
                    continue
                if not resp.get("success", False):
                    error = resp.get("error") or {}
                    raise HAClientError(f"WS {command.get('type')} failed: {error.get('message', error)}")
                return resp.get("result")
