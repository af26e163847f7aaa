"""
Fixed, linear fallback ladder for listings.

Stages run in order; a stage is abandoned when it raises or answers with an
unsuccessful envelope. There is no retry, backoff or circuit breaking. When
every live stage fails, the last-known-good snapshot is served from the cache
(session tier first, then persistent tier); failing that, an empty list with a
warning.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from app.contacthub.cache import TieredCache

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Envelope:
    """What a listing stage answers: success flag, rows, optional error text."""

    success: bool
    items: list[dict[str, Any]] = field(default_factory=list)
    error: str | None = None

    @classmethod
    def ok(cls, items: list[dict[str, Any]]) -> "Envelope":
        return cls(success=True, items=items)

    @classmethod
    def failed(cls, error: str) -> "Envelope":
        return cls(success=False, items=[], error=error)


@dataclass(frozen=True)
class ChainResult:
    success: bool
    items: list[dict[str, Any]]
    source: str | None
    stale: bool = False
    errors: list[str] = field(default_factory=list)
    warning: str | None = None
    last_sync: str | None = None

    @property
    def count(self) -> int:
        return len(self.items)

    def as_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "count": self.count,
            "source": self.source,
            "stale": self.stale,
            "warning": self.warning,
            "errors": self.errors,
            "last_sync": self.last_sync,
        }


Stage = tuple[str, Callable[[], Envelope]]


class FallbackChain:
    def __init__(
        self,
        stages: Sequence[Stage],
        *,
        cache: TieredCache | None = None,
        cache_key: str | None = None,
        last_sync_key: str | None = None,
        on_stage_error: Callable[[str, Exception], None] | None = None,
    ) -> None:
        self.stages = list(stages)
        self.cache = cache
        self.cache_key = cache_key
        self.last_sync_key = last_sync_key
        self.on_stage_error = on_stage_error

    def run(self) -> ChainResult:
        errors: list[str] = []
        for name, stage in self.stages:
            try:
                env = stage()
            except Exception as e:
                logger.warning("Listing stage %s raised: %s", name, e)
                errors.append(f"{name}: {e}")
                if self.on_stage_error:
                    self.on_stage_error(name, e)
                continue
            if not env.success:
                logger.info("Listing stage %s unsuccessful: %s", name, env.error)
                errors.append(f"{name}: {env.error or 'unsuccessful'}")
                continue
            return self._live(name, env.items, errors)
        return self._from_cache(errors)

    def _live(self, name: str, items: list[dict[str, Any]], errors: list[str]) -> ChainResult:
        synced_at = datetime.utcnow().isoformat()
        if self.cache is not None and self.cache_key:
            self.cache.set(self.cache_key, items)
            if self.last_sync_key:
                self.cache.set(self.last_sync_key, synced_at)
        return ChainResult(success=True, items=items, source=name, errors=errors, last_sync=synced_at)

    def _from_cache(self, errors: list[str]) -> ChainResult:
        if self.cache is not None and self.cache_key:
            cached, tier = self.cache.lookup(self.cache_key)
            if cached is not None:
                last_sync = self.cache.get(self.last_sync_key) if self.last_sync_key else None
                logger.warning("All live listing stages failed; serving %s-tier cache (%d rows)", tier, len(cached))
                return ChainResult(
                    success=True,
                    items=list(cached),
                    source=f"cache:{tier}",
                    stale=True,
                    errors=errors,
                    warning="Showing cached data; the database is unavailable.",
                    last_sync=last_sync,
                )
        logger.error("All listing stages failed and no cache is available: %s", "; ".join(errors))
        return ChainResult(
            success=False,
            items=[],
            source=None,
            stale=True,
            errors=errors,
            warning="Unable to load data and no cached copy is available.",
        )
