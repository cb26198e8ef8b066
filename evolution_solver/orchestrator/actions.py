"""Actions decided by the phase orchestrator."""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from evolution_solver.core.types import Phase, Solution


class ActionType(str, Enum):
    """What the orchestrator does next for a job."""

    CREATE_TASK = "create_task"
    RETRY_TASK = "retry_task"
    WAIT = "wait"
    MARK_COMPLETE = "mark_complete"
    ALREADY_COMPLETE = "already_complete"


class Action(BaseModel):
    """One orchestrator decision."""

    model_config = ConfigDict(frozen=True)

    type: ActionType
    phase: Phase | None = None
    generation: int | None = None
    reason: str | None = None
    top_performers: list[Solution] = Field(
        default_factory=list,
        description="Previous generation's selection, for a variator task",
    )

    def describe(self) -> str:
        """Short human-readable form for logs and the CLI."""
        parts = [self.type.value]
        if self.phase is not None:
            parts.append(f"{self.phase.value}@G{self.generation}")
        if self.reason:
            parts.append(f"({self.reason})")
        return " ".join(parts)
