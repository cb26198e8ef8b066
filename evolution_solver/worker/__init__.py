"""Phase workers."""

from evolution_solver.worker.handlers import PhaseTaskRequest, PhaseTaskResponse, PhaseWorker

__all__ = ["PhaseTaskRequest", "PhaseTaskResponse", "PhaseWorker"]
