"""ChartCard: one chart's option tree, its caches and its update policy.

A card owns everything that must survive between resolutions: the
time-series caches, the watched-entity set, the fingerprint map, a
generation counter and the time-series throttle. Each ``apply_option``
call takes a new generation; a result is committed (rendered,
fingerprinted) only if no newer generation started while it was in
flight. Superseded results are dropped, their fetches still fill the cache.
"""

import inspect
import json
import logging
import time
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

from hachart.engine.collectors.ha_api import HistoryAPI, StatisticsAPI
from hachart.engine.config import CacheConfig
from hachart.engine.history.cache_ttl import min_cache_seconds_in_tree
from hachart.engine.history.fetch import fetch_history
from hachart.engine.models import HistorySpec, RenderError, StatisticsSpec
from hachart.engine.statistics.fetch import fetch_statistics
from hachart.engine.store import StateStore
from hachart.engine.tokens.guards import contains_history_token
from hachart.engine.tokens.resolve import resolve_tree
from hachart.hub.watched import should_update_for_change, snapshot_fingerprints
from hachart.shared.constants import DEBUG_MAX_CHARS
from hachart.shared.lru import LruMap

Renderer = Callable[[dict[str, Any]], Awaitable[None] | None]

CARD_DEFAULTS = {"height": "300px", "renderer": "canvas"}


def build_fetchers(  # noqa: PLR0913
    client: HistoryAPI | None,
    store: StateStore | None,
    history_cache: LruMap,
    statistics_cache: LruMap,
    now_ms: float,
    logger: logging.Logger,
):
    """History and statistics fetchers bound to one resolution.

    The statistics fetcher is None when ``client`` lacks long-term
    statistics, so ``$statistics`` resolves to ``[]``.
    """

    async def history_fetcher(spec: HistorySpec):
        if client is None:
            logger.warning("No history transport configured; $history resolves to []")
            return []
        return await fetch_history(client, store, spec, set(), history_cache, now_ms)

    async def statistics_fetcher(spec: StatisticsSpec):
        return await fetch_statistics(client, store, spec, set(), statistics_cache, now_ms)

    has_statistics = client is not None and isinstance(client, StatisticsAPI)
    return history_fetcher, (statistics_fetcher if has_statistics else None)


class ChartCard:
    """Resolves one card's ``option`` and decides when to re-resolve it."""

    def __init__(  # noqa: PLR0913
        self,
        card_id: str,
        config: Mapping[str, Any],
        client: HistoryAPI | None = None,
        renderer: Renderer | None = None,
        cache_config: CacheConfig | None = None,
        history_cache: LruMap | None = None,
        statistics_cache: LruMap | None = None,
        clock: Callable[[], float] = time.time,
    ):
        cache_config = cache_config or CacheConfig()
        self.card_id = card_id
        self.client = client
        self.renderer = renderer
        self.history_cache = history_cache if history_cache is not None else LruMap(cache_config.history_max_entries)
        self.statistics_cache = (
            statistics_cache if statistics_cache is not None else LruMap(cache_config.statistics_max_entries)
        )
        self._fallback_cache_seconds = cache_config.history_cache_seconds
        self._clock = clock
        self.logger = logging.getLogger(f"card.{card_id}")

        self.config: dict[str, Any] = {}
        self.watched_entities: set[str] = set()
        self.last_fingerprints: dict[str, str] = {}
        self.resolved_option: dict[str, Any] | None = None
        self.resolved_preview: str | None = None
        self.warnings: list[str] = []
        self.error: str | None = None
        self._generation = 0
        self._next_allowed_fetch_ms = 0.0

        self.set_config(config)

    # ── Configuration ───────────────────────────────────────────────────

    def set_config(self, config: Mapping[str, Any]) -> None:
        """Validate and store a card config; watched state restarts from scratch."""
        if not isinstance(config, Mapping):
            raise ValueError("Invalid configuration")
        if config.get("option") is None:
            raise ValueError("Missing required `option`")

        self.config = {**CARD_DEFAULTS, **config}
        self.error = None
        self.watched_entities = set()
        self.last_fingerprints = {}
        self._next_allowed_fetch_ms = 0.0

    @property
    def option(self) -> Any:
        return self.config.get("option")

    @property
    def generation(self) -> int:
        return self._generation

    def _debug_settings(self) -> tuple[bool, bool, int]:
        debug = self.config.get("debug")
        if debug is True:
            return True, True, DEBUG_MAX_CHARS
        if isinstance(debug, Mapping):
            max_chars = debug.get("max_chars")
            return (
                bool(debug.get("show_resolved_option", False)),
                bool(debug.get("log_resolved_option", False)),
                int(max_chars) if isinstance(max_chars, int) and max_chars > 0 else DEBUG_MAX_CHARS,
            )
        return False, False, DEBUG_MAX_CHARS

    # ── Resolution ──────────────────────────────────────────────────────

    def _now_ms(self) -> float:
        return self._clock() * 1000

    def _fetchers(self, store: StateStore | None, now_ms: float):
        return build_fetchers(self.client, store, self.history_cache, self.statistics_cache, now_ms, self.logger)

    @staticmethod
    def finalize_option(option: Any) -> Any:
        """Default a transparent background unless the option sets one."""
        if isinstance(option, dict) and "backgroundColor" not in option:
            return {"backgroundColor": "transparent", **option}
        return option

    def _debug_preview(self, option: Any) -> str | None:
        """Log the resolved option if asked; return the preview to keep, if any."""
        show, log, max_chars = self._debug_settings()
        if not (show or log):
            return None
        text = json.dumps(option, indent=2, default=str)
        if len(text) > max_chars:
            text = text[:max_chars] + "\n… (truncated)"
        if log:
            self.logger.info("Resolved option for %s:\n%s", self.card_id, text)
        return text if show else None

    async def _render(self, option: Any) -> None:
        if self.renderer is None:
            return
        result = self.renderer(option)
        if inspect.isawaitable(result):
            await result

    async def apply_option(self, store: StateStore | None) -> dict[str, Any] | None:
        """Resolve and render the option.

        Returns the rendered option, or None when a newer apply superseded
        this one. Resolution errors propagate; a renderer failure is
        recorded in ``self.error`` and raised as ``RenderError``.
        """
        if self.option is None:
            return None

        self._generation += 1
        run_id = self._generation
        now_ms = self._now_ms()
        history_fetcher, statistics_fetcher = self._fetchers(store, now_ms)

        try:
            result = await resolve_tree(self.option, store, history_fetcher, statistics_fetcher)
        except Exception as e:
            if run_id == self._generation:
                self.error = str(e)
                self.logger.error("Failed to resolve option for %s: %s", self.card_id, e)
            raise

        if run_id != self._generation:
            self.logger.debug("Discarding stale resolution %d (current %d)", run_id, self._generation)
            return None

        option = self.finalize_option(result.option)
        preview = self._debug_preview(option)

        try:
            await self._render(option)
        except Exception as e:
            if run_id == self._generation:
                # Fingerprints stay untouched so the next notification retries.
                self.watched_entities = result.watched_entities
                self.error = str(e)
            self.logger.error("Renderer rejected option for %s: %s", self.card_id, e)
            raise RenderError(str(e)) from e

        # A newer apply may have committed while the renderer was awaited.
        if run_id != self._generation:
            self.logger.debug("Discarding stale render %d (current %d)", run_id, self._generation)
            return None

        self.watched_entities = result.watched_entities
        self.warnings = result.warnings
        self.resolved_preview = preview
        self.resolved_option = option
        self.error = None
        snapshot_fingerprints(store, self.watched_entities, self.last_fingerprints)
        return option

    async def on_store_update(self, store: StateStore | None) -> bool:
        """React to a state-store notification. Returns True if an apply ran.

        Trees with time-series generators are throttled to one apply per
        smallest ``cache_seconds``; the next slot is reserved before the
        fetch so notifications arriving mid-fetch do not overlap it.
        """
        if self.option is None:
            return False
        if not should_update_for_change(store, self.watched_entities, self.last_fingerprints):
            return False

        if contains_history_token(self.option):
            now_ms = self._now_ms()
            if now_ms < self._next_allowed_fetch_ms:
                self.logger.debug("Throttled update for %s", self.card_id)
                return False
            min_seconds = min_cache_seconds_in_tree(self.option, self._fallback_cache_seconds)
            self._next_allowed_fetch_ms = now_ms + min_seconds * 1000

        await self.apply_option(store)
        return True

    def status(self) -> dict[str, Any]:
        return {
            "card_id": self.card_id,
            "generation": self._generation,
            "watched_entities": sorted(self.watched_entities),
            "warnings": list(self.warnings),
            "error": self.error,
            "resolved_option": self.resolved_option,
            "resolved_preview": self.resolved_preview,
        }
