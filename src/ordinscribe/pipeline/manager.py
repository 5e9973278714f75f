"""Inscription manager owning single-file sessions and batches."""

import logging
import threading
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import BinaryIO

from pydantic import ValidationError as PydanticValidationError

from ordinscribe.config import get_settings
from ordinscribe.models.batch import Batch, BatchItem
from ordinscribe.models.errors import (
    ExecutionError,
    InscribeError,
    TransportError,
    ValidationError,
)
from ordinscribe.models.options import InscriptionOptions
from ordinscribe.models.pipeline import CommandsData, InscriptionResult, Pipeline
from ordinscribe.models.step import Step
from ordinscribe.orchestrator.events import EventBus
from ordinscribe.orchestrator.executor import Orchestrator
from ordinscribe.pipeline.batch import BatchDriver
from ordinscribe.remote.client import HttpRemoteExecutor, RemoteExecutor
from ordinscribe.storage.diagnostics import DiagnosticsSink
from ordinscribe.storage.upload_store import UploadStore

logger = logging.getLogger(__name__)

Upload = tuple[str, BinaryIO, str | None]


class InscriptionManager:
    """Creates pipelines from uploads and routes user actions to the orchestrator."""

    def __init__(
        self,
        executor: RemoteExecutor | None = None,
        upload_store: UploadStore | None = None,
        diagnostics: DiagnosticsSink | None = None,
        events: EventBus | None = None,
    ):
        settings = get_settings()
        self.executor = executor if executor is not None else HttpRemoteExecutor()
        self.uploads = upload_store if upload_store is not None else UploadStore()
        if diagnostics is None:
            diagnostics = DiagnosticsSink(
                settings.diagnostics_max_entries, settings.diagnostics_log_dir
            )
        self.diagnostics = diagnostics
        self.events = events if events is not None else EventBus()
        self.orchestrator = Orchestrator(self.executor, self.diagnostics, self.events)
        self.batch_driver = BatchDriver(self.orchestrator, self.diagnostics)
        self._pipelines: dict[str, Pipeline] = {}
        self._batches: dict[str, Batch] = {}
        self._busy: set[tuple[str, int]] = set()
        self._lock = threading.Lock()

    # --- single-file sessions ---

    def create_pipeline(
        self,
        file_name: str,
        stream: BinaryIO,
        options: InscriptionOptions,
        content_type: str | None = None,
    ) -> Pipeline:
        """Store an upload, ask the remote for its commands and build a fresh pipeline."""
        pipeline_id = str(uuid.uuid4())
        try:
            pipeline = self._build_pipeline(
                pipeline_id, pipeline_id, file_name, stream, options, content_type
            )
        except InscribeError:
            self.uploads.cleanup(pipeline_id)
            raise
        with self._lock:
            self._pipelines[pipeline_id] = pipeline
        logger.info(f"Created pipeline {pipeline_id} for {pipeline.file_ref.name}")
        return pipeline

    def get_pipeline(self, pipeline_id: str) -> Pipeline | None:
        return self._pipelines.get(pipeline_id)

    def require_pipeline(self, pipeline_id: str) -> Pipeline:
        pipeline = self.get_pipeline(pipeline_id)
        if pipeline is None:
            raise ValidationError(f"Pipeline {pipeline_id} not found")
        return pipeline

    def run_all(self, pipeline_id: str) -> InscriptionResult | None:
        pipeline = self.require_pipeline(pipeline_id)
        with self._claim(pipeline):
            return self.orchestrator.run_all(pipeline)

    def run_step_by_step(self, pipeline_id: str) -> bool:
        pipeline = self.require_pipeline(pipeline_id)
        with self._claim(pipeline):
            return self.orchestrator.run_step_by_step(pipeline)

    def execute_step(self, pipeline_id: str, index: int) -> Step | None:
        pipeline = self.require_pipeline(pipeline_id)
        with self._claim(pipeline):
            return self.orchestrator.execute_step(pipeline, index)

    def reset(self, pipeline_id: str) -> Pipeline:
        """Start the pipeline over. A step still in flight is detached, not awaited."""
        pipeline = self.require_pipeline(pipeline_id)
        self.orchestrator.reset(pipeline)
        return pipeline

    def try_again(self, pipeline_id: str) -> Pipeline:
        """Clear the result so the inscribe step can be re-attempted."""
        pipeline = self.require_pipeline(pipeline_id)
        self.orchestrator.clear_result(pipeline)
        return pipeline

    def remove_pipeline(self, pipeline_id: str) -> bool:
        with self._lock:
            pipeline = self._pipelines.pop(pipeline_id, None)
        if pipeline is None:
            return False
        self.uploads.cleanup(pipeline_id)
        logger.info(f"Removed pipeline {pipeline_id}")
        return True

    # --- batches ---

    def create_batch(self, uploads: list[Upload], options: InscriptionOptions) -> Batch:
        """Build one batch item per upload, keeping upload order."""
        if not uploads:
            raise ValidationError("A batch needs at least one file")
        batch_id = str(uuid.uuid4())
        items = []
        try:
            for file_name, stream, content_type in uploads:
                pipeline_id = str(uuid.uuid4())
                pipeline = self._build_pipeline(
                    f"{batch_id}/{pipeline_id}", pipeline_id,
                    file_name, stream, options, content_type,
                )
                items.append(BatchItem(display_name=pipeline.file_ref.name, pipeline=pipeline))
        except InscribeError:
            self.uploads.cleanup(batch_id)
            raise
        batch = Batch(batch_id=batch_id, items=items)
        with self._lock:
            self._batches[batch_id] = batch
        logger.info(f"Created batch {batch_id} with {len(items)} items")
        return batch

    def get_batch(self, batch_id: str) -> Batch | None:
        return self._batches.get(batch_id)

    def require_batch(self, batch_id: str) -> Batch:
        batch = self.get_batch(batch_id)
        if batch is None:
            raise ValidationError(f"Batch {batch_id} not found")
        return batch

    def begin_batch(self, batch_id: str) -> int:
        """Mark a batch started; pair with ``drive_batch`` to process it."""
        return self.batch_driver.begin(self.require_batch(batch_id))

    def drive_batch(self, batch_id: str, epoch: int) -> Batch:
        batch = self.require_batch(batch_id)
        self.batch_driver.drive(batch, epoch)
        return batch

    def start_batch(self, batch_id: str) -> Batch:
        return self.batch_driver.start(self.require_batch(batch_id))

    def cancel_batch(self, batch_id: str) -> Batch:
        return self.batch_driver.cancel(self.require_batch(batch_id))

    def remove_batch(self, batch_id: str) -> bool:
        with self._lock:
            batch = self._batches.pop(batch_id, None)
        if batch is None:
            return False
        if batch.in_progress:
            self.batch_driver.cancel(batch)
        self.uploads.cleanup(batch_id)
        logger.info(f"Removed batch {batch_id}")
        return True

    def close(self) -> None:
        """Release the remote executor's connection pool, if it has one."""
        close = getattr(self.executor, "close", None)
        if close is not None:
            close()

    def _build_pipeline(
        self,
        storage_id: str,
        pipeline_id: str,
        file_name: str,
        stream: BinaryIO,
        options: InscriptionOptions,
        content_type: str | None,
    ) -> Pipeline:
        file_ref = self.uploads.save(storage_id, file_name, stream, content_type)
        generated = self.executor.generate_commands(file_ref, options)
        try:
            commands = CommandsData(
                commands=generated.commands, file_name=generated.file_name, file_id=pipeline_id
            )
        except PydanticValidationError as e:
            raise TransportError(
                f"Command generator returned an unusable command list for {file_ref.name}",
                details={"errors": [err["msg"] for err in e.errors()]},
            )
        return Pipeline(
            pipeline_id=pipeline_id,
            file_ref=file_ref,
            commands=commands,
            created_at=datetime.now(UTC),
        )

    @contextmanager
    def _claim(self, pipeline: Pipeline) -> Iterator[None]:
        # One caller per run; a reset starts a new run that can be claimed at once
        key = (pipeline.pipeline_id, pipeline.run)
        with self._lock:
            if key in self._busy:
                raise ExecutionError(
                    f"Pipeline {pipeline.pipeline_id} is busy",
                    details={"pipeline_id": pipeline.pipeline_id},
                )
            self._busy.add(key)
        try:
            yield
        finally:
            with self._lock:
                self._busy.discard(key)
