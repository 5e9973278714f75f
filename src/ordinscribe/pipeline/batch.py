"""Batch driver running many pipelines one at a time."""

import logging
import threading
from contextlib import contextmanager

from ordinscribe.models.batch import Batch, BatchItem, BatchItemStatus
from ordinscribe.models.errors import ExecutionError
from ordinscribe.orchestrator.events import EventKind, StateEvent
from ordinscribe.orchestrator.executor import Orchestrator, describe_failure
from ordinscribe.storage.diagnostics import DiagnosticsSink

logger = logging.getLogger(__name__)


class BatchDriver:
    """Sequences ``Orchestrator.run_all`` across the items of a batch.

    Only one item's pipeline is in flight at a time. A failed item is counted
    and the driver moves on. Every start and cancel bumps ``batch.epoch``;
    responses that arrive for an older epoch are discarded.
    """

    def __init__(self, orchestrator: Orchestrator, diagnostics: DiagnosticsSink | None = None):
        self.orchestrator = orchestrator
        self.diagnostics = diagnostics
        self.events = orchestrator.events
        self._lock = threading.RLock()

    def start(self, batch: Batch) -> Batch:
        """Run every pending item to a terminal status, in insertion order."""
        epoch = self.begin(batch)
        self.drive(batch, epoch)
        return batch

    def begin(self, batch: Batch) -> int:
        """Mark the batch in progress and point the cursor at the first pending item.

        Items that already finished (a previous, partially processed run) are left alone.
        """
        with self._lock:
            if batch.in_progress:
                raise ExecutionError(
                    f"Batch {batch.batch_id} is already in progress",
                    component="batch",
                    details={"batch_id": batch.batch_id},
                )
            batch.epoch += 1
            batch.cursor = batch.next_pending_index()
            batch.in_progress = batch.cursor is not None
            logger.info(
                f"Batch {batch.batch_id} started (epoch {batch.epoch}, "
                f"{batch.remaining_count} of {len(batch.items)} items to process)"
            )
            self._publish_batch(batch)
            return batch.epoch

    def drive(self, batch: Batch, epoch: int) -> None:
        """Process items until the batch is exhausted or *epoch* is superseded."""
        while True:
            with self._lock:
                if batch.epoch != epoch or batch.cursor is None:
                    return
                index = batch.cursor
                item = batch.items[index]
                item.lifecycle_status = BatchItemStatus.PROCESSING
                self._publish_item(batch, item)

            logger.info(f"Batch {batch.batch_id}: item {index} ({item.display_name}) started")
            unsubscribe = self.events.subscribe(self._progress_listener(batch, item))
            try:
                error = self._run_item(batch, item, epoch)
            finally:
                unsubscribe()

            with self._lock:
                if batch.epoch != epoch:
                    logger.info(
                        f"Batch {batch.batch_id}: epoch {epoch} superseded, "
                        f"dropping outcome of {item.display_name}"
                    )
                    return
                self._settle(batch, item, error)
                batch.cursor = batch.next_pending_index()
                if batch.cursor is None:
                    batch.in_progress = False
                    logger.info(f"Batch {batch.batch_id} finished: {batch.summary()}")
                self._publish_batch(batch)

    def cancel(self, batch: Batch) -> Batch:
        """Abandon every unfinished item. In-flight calls are left to settle and ignored."""
        with self._lock:
            batch.epoch += 1
            for item in batch.items:
                if not item.is_terminal:
                    item.abandon()
                    batch.count_terminal(item)
                    self._publish_item(batch, item)
            batch.in_progress = False
            batch.cursor = None
            logger.info(f"Batch {batch.batch_id} cancelled (epoch {batch.epoch})")
            self._publish_batch(batch)
        return batch

    def _run_item(self, batch: Batch, item: BatchItem, epoch: int) -> str | None:
        """Run the item's pipeline; returns an error message if it could not run at all."""
        try:
            self.orchestrator.run_all(item.pipeline, guard=lambda: self._epoch_guard(batch, epoch))
        except ExecutionError as e:
            message = e.message
        except Exception as e:
            # Counted as a failed item so the rest of the batch still runs
            logger.exception(f"Batch {batch.batch_id}: item {item.display_name} crashed")
            message = describe_failure(e)
        else:
            return None
        if self.diagnostics is not None:
            self.diagnostics.record(
                message, kind="batch_error", batch_id=batch.batch_id, item_id=item.item_id
            )
        return message

    def _settle(self, batch: Batch, item: BatchItem, error: str | None) -> None:
        """Project the item's pipeline onto it and count it, exactly once."""
        if item.is_terminal:
            return
        item.sync_from_pipeline()
        if not item.is_terminal:
            item.abandon(error or "Pipeline finished without a result")
        batch.count_terminal(item)
        logger.info(
            f"Batch {batch.batch_id}: item {item.display_name} {item.lifecycle_status} "
            f"({batch.completed_count} completed, {batch.failed_count} failed)"
        )
        self._publish_item(batch, item)

    def _progress_listener(self, batch: Batch, item: BatchItem):
        pipeline_id = item.pipeline.pipeline_id

        def on_event(event: StateEvent) -> None:
            if event.kind == EventKind.STEP_CHANGED and event.pipeline_id == pipeline_id:
                item.track_progress()
                self._publish_item(batch, item)

        return on_event

    @contextmanager
    def _epoch_guard(self, batch: Batch, epoch: int):
        with self._lock:
            yield batch.epoch == epoch

    def _publish_item(self, batch: Batch, item: BatchItem) -> None:
        self.events.publish(
            StateEvent(
                kind=EventKind.ITEM_CHANGED,
                batch_id=batch.batch_id,
                pipeline_id=item.pipeline.pipeline_id,
                status=item.lifecycle_status.value,
                data={"item_id": item.item_id, "progress": item.progress},
            )
        )

    def _publish_batch(self, batch: Batch) -> None:
        self.events.publish(
            StateEvent(
                kind=EventKind.BATCH_CHANGED,
                batch_id=batch.batch_id,
                data={
                    "completed": batch.completed_count,
                    "failed": batch.failed_count,
                    "in_progress": batch.in_progress,
                    "cursor": batch.cursor,
                },
            )
        )
