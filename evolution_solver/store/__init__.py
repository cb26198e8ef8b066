"""Durable job state with atomic phase transitions."""

from pathlib import Path

from evolution_solver.store.base import BaseJobStore, TransitionAction, TransitionResult
from evolution_solver.store.file import FileJobStore
from evolution_solver.store.memory import MemoryJobStore


def create_store(backend: str, data_dir: Path | str | None = None) -> BaseJobStore:
    """Build the job store selected in settings."""
    if backend == "memory":
        return MemoryJobStore()
    if backend == "file":
        return FileJobStore(data_dir)
    raise ValueError(f"Unsupported store backend: {backend}")


__all__ = [
    "BaseJobStore",
    "FileJobStore",
    "MemoryJobStore",
    "TransitionAction",
    "TransitionResult",
    "create_store",
]
