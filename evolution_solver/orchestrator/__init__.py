"""Phase/generation state machine."""

from evolution_solver.orchestrator.actions import Action, ActionType
from evolution_solver.orchestrator.orchestrator import PhaseOrchestrator

__all__ = ["Action", "ActionType", "PhaseOrchestrator"]
