"""Idea-level enrichment cache.

Lookups go to an in-process dict first, then to the job store when one is
attached. Cache failures never fail an enrichment: they are logged and the
oracle is called as if the entry were missing.
"""

import hashlib
from typing import TYPE_CHECKING

import structlog

from evolution_solver.core.types import Solution

if TYPE_CHECKING:
    from evolution_solver.store.base import BaseJobStore

logger = structlog.get_logger()


def cache_key(solution: Solution) -> str:
    """Content hash of (id, description, core mechanism)."""
    raw = f"{solution.id}|{solution.description}|{solution.core_mechanism}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


class EnrichmentCache:
    """Per-job cache of enriched candidates.

    Writes are idempotent per key; concurrent writers may race and the last
    one wins.
    """

    def __init__(self, job_id: str, store: "BaseJobStore | None" = None) -> None:
        self._job_id = job_id
        self._store = store
        self._memory: dict[str, Solution] = {}

    async def get(self, solution: Solution) -> Solution | None:
        """Return the cached enrichment of *solution*, if any."""
        key = cache_key(solution)
        if key in self._memory:
            return self._memory[key].model_copy(deep=True)

        if self._store is None:
            return None

        try:
            cached = await self._store.get_cached_enrichment(self._job_id, key)
        except Exception as e:
            logger.warning("Cache lookup failed", solution_id=solution.id, error=str(e))
            return None

        if cached is not None:
            self._memory[key] = cached
            return cached.model_copy(deep=True)
        return None

    async def put(self, solution: Solution) -> None:
        """Store an enriched candidate."""
        key = cache_key(solution)
        self._memory[key] = solution.model_copy(deep=True)

        if self._store is None:
            return
        try:
            await self._store.put_cached_enrichment(self._job_id, key, solution)
        except Exception as e:
            logger.warning("Cache write failed", solution_id=solution.id, error=str(e))
