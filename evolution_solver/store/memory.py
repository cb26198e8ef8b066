"""In-memory job store."""

from evolution_solver.core.errors import StoreTransactionConflict
from evolution_solver.core.types import Job, Solution
from evolution_solver.store.base import BaseJobStore


class MemoryJobStore(BaseJobStore):
    """Job store keeping deep copies of documents in process memory."""

    def __init__(self) -> None:
        super().__init__()
        self._jobs: dict[str, Job] = {}
        self._cache: dict[str, dict[str, Solution]] = {}

    async def _load(self, job_id: str) -> Job | None:
        job = self._jobs.get(job_id)
        return job.model_copy(deep=True) if job is not None else None

    async def _save(self, job: Job, expected_version: int | None) -> None:
        current = self._jobs.get(job.id)
        if expected_version is not None and (
            current is None or current.version != expected_version
        ):
            raise StoreTransactionConflict("Job changed since it was read", job_id=job.id)
        self._jobs[job.id] = job.model_copy(deep=True)

    async def _list_ids(self) -> list[str]:
        return list(self._jobs)

    async def get_cached_enrichment(self, job_id: str, key: str) -> Solution | None:
        cached = self._cache.get(job_id, {}).get(key)
        return cached.model_copy(deep=True) if cached is not None else None

    async def put_cached_enrichment(self, job_id: str, key: str, solution: Solution) -> None:
        self._cache.setdefault(job_id, {})[key] = solution.model_copy(deep=True)
