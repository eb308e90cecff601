"""hachart Hub - owns the HA client, the state snapshot, caches and cards."""

import asyncio
import contextlib
import json
import logging
import random
import time
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

import aiohttp

from hachart.engine.collectors.ha_api import HAClient, StatisticsAPI
from hachart.engine.config import AppConfig
from hachart.engine.models import EntityState
from hachart.engine.store import StatesSnapshot
from hachart.engine.tokens.resolve import ResolvedTree, resolve_tree
from hachart.hub.card import ChartCard, build_fetchers
from hachart.shared.lru import LruMap

logger = logging.getLogger(__name__)


class ChartHub:
    """Central hub: one HA connection shared by every registered card.

    The time-series caches belong to the hub and are injected into each
    card, so two cards plotting the same history share one fetch.
    """

    def __init__(self, config: AppConfig | None = None, client: Any = None, clock: Callable[[], float] = time.time):
        self.config = config or AppConfig()
        self.client = client if client is not None else HAClient(self.config.ha)
        self.store = StatesSnapshot()
        self.cards: dict[str, ChartCard] = {}
        self.subscribers: dict[str, set[Callable]] = {}
        self.tasks: set[asyncio.Task] = set()
        self.history_cache = LruMap(self.config.cache.history_max_entries)
        self.statistics_cache = LruMap(self.config.cache.statistics_max_entries)
        self._clock = clock
        self._running = False
        self._start_time: datetime | None = None
        self._request_count: int = 0
        self.logger = logging.getLogger("hub")

    # ── Lifecycle ───────────────────────────────────────────────────────

    async def initialize(self, listen: bool = True):
        """Seed states from HA and start the state_changed listener."""
        self.logger.info("Initializing hachart hub...")
        self._running = True
        self._start_time = datetime.now(tz=UTC)

        if self.config.ha.token:
            try:
                await self.refresh_states()
            except (TimeoutError, aiohttp.ClientError) as e:
                self.logger.warning("Failed to seed states from %s: %s", self.config.ha.url, e)
            if listen:
                task = asyncio.create_task(self._ws_state_listener())
                self.tasks.add(task)
                task.add_done_callback(self.tasks.discard)
        else:
            self.logger.warning("HA_TOKEN not set; states must be pushed via the API")

        self.logger.info("Hub initialized successfully")

    async def shutdown(self):
        """Cancel background tasks and close the HA session."""
        self.logger.info("Shutting down hachart hub...")
        self._running = False

        for task in self.tasks:
            if not task.done():
                task.cancel()
        if self.tasks:
            await asyncio.gather(*self.tasks, return_exceptions=True)

        close = getattr(self.client, "close", None)
        if close is not None:
            await close()
        self.logger.info("Hub shutdown complete")

    def is_running(self) -> bool:
        return self._running

    def get_uptime_seconds(self) -> float:
        if not self._start_time:
            return 0
        return (datetime.now(tz=UTC) - self._start_time).total_seconds()

    # ── Events ──────────────────────────────────────────────────────────

    def subscribe(self, event_type: str, callback: Callable):
        """Subscribe an async callback to hub events."""
        self.subscribers.setdefault(event_type, set()).add(callback)
        self.logger.debug("Subscribed to event: %s", event_type)

    def unsubscribe(self, event_type: str, callback: Callable):
        if event_type in self.subscribers:
            self.subscribers[event_type].discard(callback)

    async def publish(self, event_type: str, data: dict[str, Any]):
        """Call every subscriber of ``event_type``; callback errors are logged."""
        for callback in list(self.subscribers.get(event_type, ())):
            try:
                await callback(data)
            except Exception as e:
                self.logger.error("Error in %s callback: %s", event_type, e)

    # ── Cards ───────────────────────────────────────────────────────────

    async def register_card(self, card_id: str, config: dict[str, Any]) -> ChartCard:
        """Create or replace a card and run its first apply.

        Raises:
            ValueError: the config has no ``option``.
        """
        card = self.cards.get(card_id)
        if card is None:
            card = ChartCard(
                card_id,
                config,
                client=self.client,
                renderer=self._card_renderer(card_id),
                cache_config=self.config.cache,
                history_cache=self.history_cache,
                statistics_cache=self.statistics_cache,
                clock=self._clock,
            )
            self.cards[card_id] = card
            self.logger.info("Registered card: %s", card_id)
        else:
            card.set_config(config)
            self.logger.info("Updated card config: %s", card_id)

        try:
            await card.apply_option(self.store)
        except Exception as e:
            self.logger.error("Initial apply failed for card %s: %s", card_id, e)
        return card

    def unregister_card(self, card_id: str) -> bool:
        if card_id not in self.cards:
            return False
        del self.cards[card_id]
        self.logger.info("Unregistered card: %s", card_id)
        return True

    def _card_renderer(self, card_id: str):
        async def render(option: dict[str, Any]):
            await self.publish("card_updated", {"card_id": card_id, "option": option})

        return render

    async def resolve(self, option: Any) -> ResolvedTree:
        """One-off resolution against the current snapshot and shared caches."""
        history_fetcher, statistics_fetcher = build_fetchers(
            self.client, self.store, self.history_cache, self.statistics_cache, self._clock() * 1000, self.logger
        )
        return await resolve_tree(option, self.store, history_fetcher, statistics_fetcher)

    # ── State store ─────────────────────────────────────────────────────

    async def refresh_states(self):
        """Replace the snapshot with ``GET /api/states``."""
        payload = await self.client.fetch_states()
        await self.update_states(StatesSnapshot.from_states_payload(payload))

    async def update_states(self, snapshot: StatesSnapshot):
        """Install a new snapshot and let every card decide whether to re-resolve."""
        self.store = snapshot
        await self._notify_cards()

    async def apply_state_changed(self, event_data: dict[str, Any]):
        """Fold one ``state_changed`` event payload into the snapshot."""
        entity_id = event_data.get("entity_id", "")
        new_state = event_data.get("new_state")
        if not entity_id:
            return
        state = EntityState.from_dict(new_state) if isinstance(new_state, dict) else None
        self.store = self.store.with_state(state, entity_id)
        await self._notify_cards()

    async def _notify_cards(self):
        for card_id, card in list(self.cards.items()):
            try:
                await card.on_store_update(self.store)
            except Exception as e:
                self.logger.error("Update failed for card %s: %s", card_id, e)

    # ── HA WebSocket listener ───────────────────────────────────────────

    async def _ws_state_listener(self):
        """WebSocket listener loop for state_changed events, with jittered backoff."""
        retry_delay = 5

        while self.is_running():
            try:
                retry_delay = await self._ws_state_session(retry_delay)
            except (TimeoutError, aiohttp.ClientError) as e:
                self.logger.warning("HA WebSocket error: %s, retrying in %ss", e, retry_delay)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.logger.error("HA WebSocket unexpected error: %s", e)

            if not self.is_running():
                break
            # Backoff: 5s → 10s → 20s → 60s max, ±25% jitter
            jitter = retry_delay * random.uniform(-0.25, 0.25)
            await asyncio.sleep(retry_delay + jitter)
            retry_delay = min(retry_delay * 2, 60)

    async def _ws_state_session(self, retry_delay: int) -> int:
        """Run one WebSocket session. Returns the updated retry delay."""
        ha = self.config.ha
        async with aiohttp.ClientSession() as session, session.ws_connect(ha.ws_url) as ws:
            msg = await ws.receive_json()
            if msg.get("type") != "auth_required":
                self.logger.error("Unexpected WS message: %s", msg)
                return retry_delay

            await ws.send_json({"type": "auth", "access_token": ha.token})
            auth_resp = await ws.receive_json()
            if auth_resp.get("type") != "auth_ok":
                self.logger.error("WS auth failed: %s", auth_resp)
                return retry_delay

            self.logger.info("HA WebSocket connected, listening for state changes")
            retry_delay = 5
            await ws.send_json({"id": 1, "type": "subscribe_events", "event_type": "state_changed"})

            # Resync after a reconnect; events may have been missed
            with contextlib.suppress(TimeoutError, aiohttp.ClientError):
                await self.refresh_states()

            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    await self.handle_ws_message(json.loads(msg.data))
                elif msg.type in (aiohttp.WSMsgType.CLOSED, aiohttp.WSMsgType.ERROR):
                    break

        return retry_delay

    async def handle_ws_message(self, data: dict[str, Any]):
        if data.get("type") != "event":
            return
        event = data.get("event", {})
        if event.get("event_type") == "state_changed":
            await self.apply_state_changed(event.get("data", {}))

    # ── Introspection ───────────────────────────────────────────────────

    def has_statistics(self) -> bool:
        return isinstance(self.client, StatisticsAPI)

    async def health_check(self) -> dict[str, Any]:
        return {
            "status": "ok" if self._running else "stopped",
            "uptime_seconds": self.get_uptime_seconds(),
            "entities": len(self.store),
            "cards": {card_id: {"error": card.error, "generation": card.generation} for card_id, card in self.cards.items()},
            "statistics_available": self.has_statistics(),
            "requests_total": self._request_count,
            "timestamp": datetime.now(tz=UTC).isoformat(),
        }

    def cache_stats(self) -> dict[str, Any]:
        return {
            "history": {"size": len(self.history_cache), "max_size": self.history_cache.max_size},
            "statistics": {"size": len(self.statistics_cache), "max_size": self.statistics_cache.max_size},
        }
