"""Batch state models."""

import uuid
from enum import StrEnum

from pydantic import BaseModel, Field

from ordinscribe.models.pipeline import PIPELINE_LENGTH, Pipeline

CANCELLED_MESSAGE = "Batch cancelled before this item finished"


class BatchItemStatus(StrEnum):
    """Coarse lifecycle of one batch item."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_ITEM_STATUSES = frozenset({BatchItemStatus.COMPLETED, BatchItemStatus.FAILED})


class BatchItem(BaseModel):
    """One file inside a batch, owning its pipeline."""

    item_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    display_name: str = Field(..., min_length=1)
    lifecycle_status: BatchItemStatus = Field(default=BatchItemStatus.PENDING)
    progress: int = Field(default=0, ge=0, le=100)
    pipeline: Pipeline
    last_error: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.lifecycle_status in TERMINAL_ITEM_STATUSES

    def sync_from_pipeline(self) -> BatchItemStatus:
        """Project the owned pipeline's step and result state onto the item."""
        if self.is_terminal:
            return self.lifecycle_status
        result = self.pipeline.result
        if result is not None:
            if result.success:
                self.lifecycle_status = BatchItemStatus.COMPLETED
                self.last_error = None
            else:
                self.lifecycle_status = BatchItemStatus.FAILED
                self.last_error = result.error_message
            self.progress = 100
        else:
            if self.pipeline.is_active:
                self.lifecycle_status = BatchItemStatus.PROCESSING
            self.track_progress()
        return self.lifecycle_status

    def track_progress(self) -> int:
        """Refresh progress from the number of steps that have succeeded so far."""
        if not self.is_terminal:
            self.progress = round(self.pipeline.completed_steps * 100 / PIPELINE_LENGTH)
        return self.progress

    def abandon(self, message: str = CANCELLED_MESSAGE) -> None:
        self.lifecycle_status = BatchItemStatus.FAILED
        self.last_error = message


class Batch(BaseModel):
    """A sequence of independent pipelines run one at a time."""

    batch_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    items: list[BatchItem] = Field(default_factory=list)
    cursor: int | None = None
    completed_count: int = Field(default=0, ge=0)
    failed_count: int = Field(default=0, ge=0)
    in_progress: bool = False
    epoch: int = Field(default=0, ge=0, description="Incremented on every start and cancel")

    @property
    def processed_count(self) -> int:
        return self.completed_count + self.failed_count

    @property
    def remaining_count(self) -> int:
        return sum(1 for item in self.items if not item.is_terminal)

    @property
    def percent_complete(self) -> int:
        if not self.items:
            return 0
        return round(self.processed_count / len(self.items) * 100)

    def next_pending_index(self, start: int = 0) -> int | None:
        for i in range(start, len(self.items)):
            if self.items[i].lifecycle_status == BatchItemStatus.PENDING:
                return i
        return None

    def count_terminal(self, item: BatchItem) -> None:
        """Apply an item's terminal status to the aggregate counters, exactly once."""
        if item.lifecycle_status == BatchItemStatus.COMPLETED:
            self.completed_count += 1
        elif item.lifecycle_status == BatchItemStatus.FAILED:
            self.failed_count += 1

    def summary(self) -> str:
        total = len(self.items)
        if not total or self.processed_count < total:
            return f"{self.processed_count} of {total} processed"
        if self.failed_count == 0:
            return f"All {total} items were inscribed successfully."
        if self.completed_count == 0:
            return f"All {total} items failed to inscribe."
        return (
            f"Processing complete with {self.completed_count} successful "
            f"and {self.failed_count} failed items."
        )
