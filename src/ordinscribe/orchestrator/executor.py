"""Orchestrator driving one pipeline's serve/download/inscribe steps."""

import logging
import threading
from collections.abc import Callable
from contextlib import AbstractContextManager, contextmanager

from ordinscribe.config import get_settings
from ordinscribe.models.errors import ExecutionError, InscribeError
from ordinscribe.models.pipeline import PIPELINE_LENGTH, InscriptionResult, Pipeline
from ordinscribe.models.remote import StepResponse
from ordinscribe.models.step import Step, StepName, StepStatus
from ordinscribe.orchestrator.events import EventBus, EventKind, StateEvent
from ordinscribe.orchestrator.ports import extract_port
from ordinscribe.remote.client import RemoteExecutor
from ordinscribe.storage.diagnostics import DiagnosticsSink

logger = logging.getLogger(__name__)

# Entered around every state mutation; yields False when the caller no longer
# owns the pipeline and the pending update must be discarded.
Guard = Callable[[], AbstractContextManager[bool]]


def describe_failure(exc: Exception) -> str:
    """Text recorded as step output for an exception raised by a remote call."""
    return str(exc) or type(exc).__name__


class Orchestrator:
    """State machine for a single pipeline.

    ``run_all``, ``run_step_by_step`` and ``execute_step`` are the only code
    paths that change step or result state. Failures from the remote boundary
    never propagate out of them; they are captured as step output and results.
    """

    def __init__(
        self,
        executor: RemoteExecutor,
        diagnostics: DiagnosticsSink | None = None,
        events: EventBus | None = None,
        default_port: int | None = None,
    ):
        self.executor = executor
        self.diagnostics = diagnostics
        self.events = events if events is not None else EventBus()
        self.default_port = default_port or get_settings().default_serve_port
        self._lock = threading.RLock()

    def current_run(self, pipeline: Pipeline) -> Guard:
        """Guard that stays current until *pipeline* is reset."""
        run = pipeline.run

        @contextmanager
        def guard():
            with self._lock:
                yield pipeline.run == run

        return guard

    def run_all(
        self, pipeline: Pipeline | None, guard: Guard | None = None
    ) -> InscriptionResult | None:
        """Execute steps 0, 1 and 2 in order, halting at the first failure.

        Any failure records a failure result built from the failed step's output.
        Returns the result, or None when the run was discarded by *guard*.
        """
        if pipeline is None:
            return None
        with self._lock:
            self._check_fresh(pipeline)
        if guard is None:
            guard = self.current_run(pipeline)

        response: StepResponse | None = None
        for step in pipeline.steps:
            with guard() as current:
                if not current:
                    return self._discarded(pipeline, step)
                self._begin(pipeline, step)

            try:
                response = self._call(pipeline, step)
            except Exception as e:
                with guard() as current:
                    if not current:
                        return self._discarded(pipeline, step)
                    return self._transport_failure(pipeline, e)

            with guard() as current:
                if not current:
                    return self._discarded(pipeline, step)
                if response.error:
                    self._finish(pipeline, step, StepStatus.ERROR, response.output)
                    return self._set_result(pipeline, InscriptionResult.failure(response.output))
                self._finish(pipeline, step, StepStatus.SUCCESS, response.output)

        with guard() as current:
            if not current:
                return None
            return self._set_result(pipeline, self._success_result(response))

    def run_step_by_step(self, pipeline: Pipeline | None) -> bool:
        """Arm step 0 for manual execution. Returns True when manual mode is armed."""
        if pipeline is None:
            return False
        first = pipeline.step(StepName.SERVE)
        if first.status != StepStatus.PENDING:
            logger.warning(
                f"Pipeline {pipeline.pipeline_id}: step-by-step requested with serve "
                f"already {first.status}"
            )
            return False
        self._transition(pipeline, first, StepStatus.READY)
        return True

    def execute_step(
        self, pipeline: Pipeline | None, index: int, guard: Guard | None = None
    ) -> Step | None:
        """Execute exactly one step.

        On success the next step becomes ready. A failure at serve or download
        leaves the pipeline retryable without a result; only the inscribe step
        produces a result. Out-of-range indices are ignored.
        """
        if pipeline is None or not 0 <= index < PIPELINE_LENGTH:
            logger.debug(f"Ignoring execute_step({index})")
            return None
        if guard is None:
            guard = self.current_run(pipeline)

        step = pipeline.step(index)
        if not pipeline.predecessor_succeeded(index):
            raise ExecutionError(
                f"Step {step.name} cannot run before step {StepName(index - 1).name.lower()} "
                "has succeeded",
                details={"step": index},
            )
        if step.status in (StepStatus.RUNNING, StepStatus.SUCCESS):
            raise ExecutionError(
                f"Step {step.name} is already {step.status}", details={"step": index}
            )
        if pipeline.result is not None:
            raise ExecutionError(
                f"Pipeline {pipeline.pipeline_id} already has a result; clear it to retry",
                details={"step": index},
            )

        with guard() as current:
            if not current:
                return self._discarded(pipeline, step)
            self._begin(pipeline, step)

        try:
            response = self._call(pipeline, step)
        except Exception as e:
            message = describe_failure(e)
            with guard() as current:
                if not current:
                    return self._discarded(pipeline, step)
                self._finish(pipeline, step, StepStatus.ERROR, message, kind="transport_error")
                if index == StepName.INSCRIBE:
                    self._set_result(pipeline, InscriptionResult.failure(message))
            return step

        with guard() as current:
            if not current:
                return self._discarded(pipeline, step)
            if response.error:
                self._finish(pipeline, step, StepStatus.ERROR, response.output)
                if index == StepName.INSCRIBE:
                    self._set_result(pipeline, InscriptionResult.failure(response.output))
                return step

            self._finish(pipeline, step, StepStatus.SUCCESS, response.output)
            if index < StepName.INSCRIBE:
                following = pipeline.step(index + 1)
                if following.status == StepStatus.PENDING:
                    self._transition(pipeline, following, StepStatus.READY)
            else:
                self._set_result(pipeline, self._success_result(response))
        return step

    def reset(self, pipeline: Pipeline) -> None:
        """Return every step to pending and drop the result.

        A call still in flight for the previous run is left to settle; its
        response is discarded.
        """
        with self._lock:
            pipeline.reset()
        logger.info(f"Pipeline {pipeline.pipeline_id} reset (run {pipeline.run})")
        self.events.publish(
            StateEvent(kind=EventKind.PIPELINE_RESET, pipeline_id=pipeline.pipeline_id)
        )

    def clear_result(self, pipeline: Pipeline) -> None:
        """Drop the terminal result so a failed inscribe step can be re-attempted."""
        with self._lock:
            pipeline.clear_result()
        self.events.publish(
            StateEvent(kind=EventKind.RESULT_SET, pipeline_id=pipeline.pipeline_id, data={})
        )

    def _call(self, pipeline: Pipeline, step: Step) -> StepResponse:
        if step.index == StepName.SERVE:
            port = extract_port(step.command_text, self.default_port)
            return self.executor.serve(pipeline.file_ref, port)
        if step.index == StepName.DOWNLOAD:
            return self.executor.download(pipeline.commands.file_name, step.command_text)
        return self.executor.inscribe(step.command_text)

    def _check_fresh(self, pipeline: Pipeline) -> None:
        started = [
            s for s in pipeline.steps if s.status not in (StepStatus.PENDING, StepStatus.READY)
        ]
        if started or pipeline.result is not None:
            raise ExecutionError(
                f"Pipeline {pipeline.pipeline_id} has already run; reset it first",
                details={"pipeline_id": pipeline.pipeline_id},
            )

    def _begin(self, pipeline: Pipeline, step: Step) -> None:
        logger.info(f"Pipeline {pipeline.pipeline_id}: running {step.name}")
        self._transition(pipeline, step, StepStatus.RUNNING, output="")

    def _finish(
        self,
        pipeline: Pipeline,
        step: Step,
        status: StepStatus,
        output: str,
        kind: str = "step_error",
    ) -> None:
        if status == StepStatus.ERROR:
            logger.warning(f"Pipeline {pipeline.pipeline_id}: {step.name} failed: {output}")
            self._record_failure(pipeline, step, output, kind=kind)
        else:
            logger.info(f"Pipeline {pipeline.pipeline_id}: {step.name} succeeded")
        self._transition(pipeline, step, status, output=output)

    def _transition(
        self, pipeline: Pipeline, step: Step, status: StepStatus, output: str | None = None
    ) -> None:
        step.transition(status, output)
        self.events.publish(
            StateEvent(
                kind=EventKind.STEP_CHANGED,
                pipeline_id=pipeline.pipeline_id,
                step_index=int(step.index),
                status=status.value,
                data={"output": step.output},
            )
        )

    def _transport_failure(self, pipeline: Pipeline, exc: Exception) -> InscriptionResult:
        message = describe_failure(exc)
        if not isinstance(exc, InscribeError):
            logger.warning(
                f"Pipeline {pipeline.pipeline_id}: unexpected {type(exc).__name__} from remote call"
            )
        step = pipeline.running_step
        if step is not None:
            self._record_failure(pipeline, step, message, kind="transport_error")
            self._transition(pipeline, step, StepStatus.ERROR, output=message)
        else:
            self._record_failure(pipeline, None, message, kind="transport_error")
        return self._set_result(pipeline, InscriptionResult.failure(message))

    def _set_result(self, pipeline: Pipeline, result: InscriptionResult) -> InscriptionResult:
        pipeline.set_result(result)
        self.events.publish(
            StateEvent(
                kind=EventKind.RESULT_SET,
                pipeline_id=pipeline.pipeline_id,
                status="success" if result.success else "error",
                data=result.model_dump(),
            )
        )
        return result

    def _record_failure(
        self, pipeline: Pipeline, step: Step | None, message: str, kind: str
    ) -> None:
        if self.diagnostics is None:
            return
        self.diagnostics.record(
            message or "(no output)",
            kind=kind,
            pipeline_id=pipeline.pipeline_id,
            step=step.name if step else None,
            file_name=pipeline.file_ref.name,
        )

    def _discarded(self, pipeline: Pipeline, step: Step) -> None:
        logger.info(
            f"Pipeline {pipeline.pipeline_id}: discarding {step.name} update, run no longer current"
        )
        return None

    @staticmethod
    def _success_result(response: StepResponse | None) -> InscriptionResult:
        if response is None:
            return InscriptionResult(success=True)
        return InscriptionResult(
            success=True,
            inscription_id=response.inscription_id or None,
            transaction_id=response.transaction_id or None,
            fee_paid=response.fee_paid or None,
        )
