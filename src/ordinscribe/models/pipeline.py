"""Pipeline state, command and result models."""

import uuid
from datetime import datetime
from pathlib import Path

from pydantic import BaseModel, Field, field_validator, model_validator

from ordinscribe.models.errors import ExecutionError, ResourceError
from ordinscribe.models.step import Step, StepName, StepStatus

PIPELINE_LENGTH = len(StepName)
UNKNOWN_ERROR = "Unknown error"


class FileRef(BaseModel):
    """Handle to an uploaded artifact stored on disk."""

    name: str = Field(..., min_length=1, description="Declared file name")
    path: Path
    content_type: str = Field(default="application/octet-stream")
    size: int = Field(default=0, ge=0)

    def read_bytes(self) -> bytes:
        try:
            return self.path.read_bytes()
        except OSError as e:
            raise ResourceError(
                f"Uploaded file {self.name} is not readable: {e}", details={"path": str(self.path)}
            )


class CommandsData(BaseModel):
    """Commands produced by the remote generator for one file."""

    commands: list[str]
    file_name: str = Field(..., min_length=1)
    file_id: str | None = None

    @field_validator("commands")
    @classmethod
    def validate_command_count(cls, v: list[str]) -> list[str]:
        if len(v) < PIPELINE_LENGTH:
            raise ValueError(f"Expected at least {PIPELINE_LENGTH} commands, got {len(v)}")
        return v

    def step_commands(self) -> tuple[str, str, str]:
        """Return the (serve, download, inscribe) command triple.

        Extra transfer commands (metadata files) sit between the download and the
        inscribe command and are chained onto the download step.
        """
        transfers = self.commands[1:-1]
        return self.commands[0], " && ".join(transfers), self.commands[-1]


class InscriptionResult(BaseModel):
    """Terminal outcome of a pipeline."""

    success: bool
    inscription_id: str | None = None
    transaction_id: str | None = None
    fee_paid: str | None = None
    error_message: str | None = None

    @model_validator(mode="after")
    def validate_outcome_fields(self) -> "InscriptionResult":
        if self.success:
            self.error_message = None
        else:
            self.inscription_id = self.transaction_id = self.fee_paid = None
            if not self.error_message:
                self.error_message = UNKNOWN_ERROR
        return self

    @classmethod
    def failure(cls, message: str | None) -> "InscriptionResult":
        return cls(success=False, error_message=message)


class Pipeline(BaseModel):
    """The serve/download/inscribe execution for one uploaded file."""

    pipeline_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    file_ref: FileRef
    commands: CommandsData
    steps: list[Step] = Field(default_factory=list)
    result: InscriptionResult | None = None
    run: int = Field(default=0, ge=0, description="Incremented on every reset")
    created_at: datetime | None = None

    @model_validator(mode="after")
    def build_steps(self) -> "Pipeline":
        if not self.steps:
            self.steps = [
                Step(index=name, command_text=text)
                for name, text in zip(StepName, self.commands.step_commands())
            ]
        if len(self.steps) != PIPELINE_LENGTH:
            raise ValueError(f"A pipeline has exactly {PIPELINE_LENGTH} steps")
        return self

    def step(self, index: int) -> Step:
        return self.steps[index]

    @property
    def running_step(self) -> Step | None:
        for step in self.steps:
            if step.status == StepStatus.RUNNING:
                return step
        return None

    @property
    def is_active(self) -> bool:
        return any(s.status in (StepStatus.READY, StepStatus.RUNNING) for s in self.steps)

    @property
    def completed_steps(self) -> int:
        return sum(1 for s in self.steps if s.status == StepStatus.SUCCESS)

    def predecessor_succeeded(self, index: int) -> bool:
        return index == 0 or self.steps[index - 1].status == StepStatus.SUCCESS

    def set_result(self, result: InscriptionResult) -> None:
        if self.result is not None:
            raise ExecutionError(
                f"Pipeline {self.pipeline_id} already has a result",
                details={"pipeline_id": self.pipeline_id},
            )
        self.result = result

    def clear_result(self) -> None:
        self.result = None

    def reset(self) -> None:
        for step in self.steps:
            step.clear()
        self.result = None
        self.run += 1
