"""Engine registry, authentication cache and per-step engine selection."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from agent_conductor.engines.base import EngineAdapter
from agent_conductor.errors import EngineSelectionError

logger = logging.getLogger(__name__)

DEFAULT_AUTH_TTL_SECONDS = 300.0


class AuthCache:
    """Caches ``is_authenticated`` results per engine for ``ttl`` seconds.

    Auth probes can be slow (they may spawn the engine binary), and many
    sub-agents start back to back. Results up to ``ttl`` old are accepted.
    """

    def __init__(
        self,
        ttl: float = DEFAULT_AUTH_TTL_SECONDS,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl = ttl
        self._clock = clock
        self._entries: dict[str, tuple[bool, float]] = {}

    async def is_authenticated(self, engine: EngineAdapter) -> bool:
        now = self._clock()
        cached = self._entries.get(engine.id)
        if cached is not None and now - cached[1] < self.ttl:
            return cached[0]

        try:
            result = bool(await engine.is_authenticated())
        except Exception as e:
            logger.warning(f"Authentication check for {engine.id} failed: {e}")
            result = False
        self._entries[engine.id] = (result, now)
        return result

    def invalidate(self, engine_id: str | None = None) -> None:
        if engine_id is None:
            self._entries.clear()
        else:
            self._entries.pop(engine_id, None)


class EngineRegistry:
    """Engines in registration order, with an optional configured default."""

    def __init__(self, default_id: str | None = None) -> None:
        self._engines: dict[str, EngineAdapter] = {}
        self.default_id = default_id

    def register(self, engine: EngineAdapter) -> None:
        if engine.id in self._engines:
            logger.warning(f"Engine {engine.id} registered twice; keeping the latest")
        self._engines[engine.id] = engine

    def get(self, engine_id: str) -> EngineAdapter | None:
        return self._engines.get(engine_id)

    def all(self) -> list[EngineAdapter]:
        return list(self._engines.values())

    def get_default(self) -> EngineAdapter | None:
        if self.default_id and self.default_id in self._engines:
            return self._engines[self.default_id]
        engines = self.all()
        return engines[0] if engines else None

    def __len__(self) -> int:
        return len(self._engines)


async def _first_authenticated(registry: EngineRegistry, cache: AuthCache) -> EngineAdapter | None:
    for engine in registry.all():
        if await cache.is_authenticated(engine):
            return engine
    return None


async def select_engine(
    registry: EngineRegistry,
    cache: AuthCache,
    override: str | None = None,
) -> EngineAdapter:
    """Choose the engine for a step.

    Order: the override if it is authenticated, then the first authenticated
    engine in registration order, then the registry default.

    Raises:
        EngineSelectionError: If no engines are registered.
    """
    if not len(registry):
        raise EngineSelectionError("No engines registered. Please configure at least one engine.")

    if override:
        engine = registry.get(override)
        if engine is not None and await cache.is_authenticated(engine):
            return engine
        label = engine.name if engine is not None else override
        logger.warning(
            f"{label} override is not authenticated; falling back to first authenticated engine"
        )

    engine = await _first_authenticated(registry, cache)
    if engine is None:
        engine = registry.get_default()
        assert engine is not None
        logger.warning(f"No authenticated engine found; using default {engine.id}")
    return engine


__all__ = [
    "AuthCache",
    "DEFAULT_AUTH_TTL_SECONDS",
    "EngineRegistry",
    "select_engine",
]
