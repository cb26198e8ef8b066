"""JSON-file job store."""

import json
import os
import tempfile
from pathlib import Path
from typing import Any

import structlog

from evolution_solver.core.errors import StoreTransactionConflict
from evolution_solver.core.types import Job, Solution
from evolution_solver.store.base import BaseJobStore

logger = structlog.get_logger()


class FileJobStore(BaseJobStore):
    """Stores each job as a directory holding JSON documents.

    Layout::

        <data_dir>/<job_id>/job.json
        <data_dir>/<job_id>/enrichment_cache.json
    """

    JOB_FILE = "job.json"
    CACHE_FILE = "enrichment_cache.json"

    def __init__(self, data_dir: Path | str | None = None) -> None:
        """Initialize the file store.

        Args:
            data_dir: Base directory for job data. Defaults to ./local_data/jobs
        """
        super().__init__()
        if data_dir is None:
            data_dir = Path("local_data") / "jobs"
        self._data_dir = Path(data_dir)
        self._data_dir.mkdir(parents=True, exist_ok=True)

    @property
    def data_dir(self) -> Path:
        """Get the data directory."""
        return self._data_dir

    def _job_dir(self, job_id: str) -> Path:
        return self._data_dir / job_id

    def _read_json(self, path: Path) -> Any:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)

    def _write_json(self, path: Path, data: Any) -> None:
        """Write *data* atomically via a temporary file in the same directory."""
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, ensure_ascii=False, indent=2)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    async def _load(self, job_id: str) -> Job | None:
        job_file = self._job_dir(job_id) / self.JOB_FILE
        if not job_file.exists():
            return None
        return Job.model_validate(self._read_json(job_file))

    async def _save(self, job: Job, expected_version: int | None) -> None:
        job_file = self._job_dir(job.id) / self.JOB_FILE
        if expected_version is not None:
            current = self._read_json(job_file) if job_file.exists() else None
            if current is None or current.get("version") != expected_version:
                raise StoreTransactionConflict("Job changed since it was read", job_id=job.id)
        self._write_json(job_file, job.model_dump(mode="json"))

    async def _list_ids(self) -> list[str]:
        return [
            d.name
            for d in self._data_dir.iterdir()
            if d.is_dir() and not d.name.startswith(".") and (d / self.JOB_FILE).exists()
        ]

    def _read_cache(self, job_id: str) -> dict[str, Any]:
        cache_file = self._job_dir(job_id) / self.CACHE_FILE
        if not cache_file.exists():
            return {}
        return self._read_json(cache_file)

    async def get_cached_enrichment(self, job_id: str, key: str) -> Solution | None:
        entry = self._read_cache(job_id).get(key)
        return Solution.model_validate(entry) if entry is not None else None

    async def put_cached_enrichment(self, job_id: str, key: str, solution: Solution) -> None:
        cache = self._read_cache(job_id)
        cache[key] = solution.model_dump(mode="json")
        self._write_json(self._job_dir(job_id) / self.CACHE_FILE, cache)
