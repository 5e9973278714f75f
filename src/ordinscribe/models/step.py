"""Pipeline step models."""

from enum import IntEnum, StrEnum

from pydantic import BaseModel, Field

from ordinscribe.models.errors import ExecutionError


class StepName(IntEnum):
    """Stages of the inscription pipeline, addressed by index."""

    SERVE = 0
    DOWNLOAD = 1
    INSCRIBE = 2


class StepStatus(StrEnum):
    """Status of a single pipeline step."""

    PENDING = "pending"
    READY = "ready"
    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"


# Forward-only transitions. ERROR -> RUNNING is the manual re-attempt of a failed step.
ALLOWED_TRANSITIONS: dict[StepStatus, frozenset[StepStatus]] = {
    StepStatus.PENDING: frozenset({StepStatus.READY, StepStatus.RUNNING}),
    StepStatus.READY: frozenset({StepStatus.RUNNING}),
    StepStatus.RUNNING: frozenset({StepStatus.SUCCESS, StepStatus.ERROR}),
    StepStatus.SUCCESS: frozenset(),
    StepStatus.ERROR: frozenset({StepStatus.RUNNING}),
}


class Step(BaseModel):
    """One stage of a pipeline with its own status and captured output."""

    index: StepName
    command_text: str = Field(default="", frozen=True)
    status: StepStatus = Field(default=StepStatus.PENDING)
    output: str = Field(default="")

    @property
    def name(self) -> str:
        return self.index.name.lower()

    def can_transition(self, status: StepStatus) -> bool:
        return status in ALLOWED_TRANSITIONS[self.status]

    def transition(self, status: StepStatus, output: str | None = None) -> None:
        """Move the step forward, optionally replacing its captured output."""
        if not self.can_transition(status):
            raise ExecutionError(
                f"Step {self.name} cannot move from {self.status} to {status}",
                details={"step": int(self.index), "from": self.status, "to": status},
            )
        self.status = status
        if output is not None:
            self.output = output

    def clear(self) -> None:
        """Return the step to pending. Only pipeline resets call this."""
        self.status = StepStatus.PENDING
        self.output = ""
