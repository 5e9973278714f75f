"""Tests for the Orchestrator state machine (scripted remote)."""

import pytest

from ordinscribe.models.errors import ExecutionError, ResourceError, TransportError
from ordinscribe.models.pipeline import UNKNOWN_ERROR
from ordinscribe.models.step import StepStatus
from ordinscribe.orchestrator.events import EventKind
from ordinscribe.orchestrator.executor import Orchestrator
from ordinscribe.orchestrator.ports import extract_port
from tests.conftest import FakeExecutor, failed, ok


def statuses(pipeline):
    return [s.status for s in pipeline.steps]


class TestExtractPort:
    def test_http_server_port(self):
        assert extract_port("python3 -m http.server 8123") == 8123

    def test_port_flag(self):
        assert extract_port("serve --port 9001 ./files") == 9001

    def test_default_when_absent(self):
        assert extract_port("python3 -m http.server") == 8000

    def test_custom_default(self):
        assert extract_port("", default=8500) == 8500

    def test_out_of_range_port_ignored(self):
        assert extract_port("python3 -m http.server 99999") == 8000


class TestRunAll:
    def test_success_produces_result(self, orchestrator, pipeline, fake_executor):
        result = orchestrator.run_all(pipeline)

        assert result.success is True
        assert result.inscription_id == "abc123i0"
        assert result.transaction_id == "tx1"
        assert result.fee_paid == "1,000 sats"
        assert pipeline.result == result
        assert statuses(pipeline) == [StepStatus.SUCCESS] * 3
        assert fake_executor.call_names == ["serve", "download", "inscribe"]

    def test_serve_uses_port_from_command(self, orchestrator, pipeline, fake_executor):
        orchestrator.run_all(pipeline)
        assert fake_executor.calls[0] == ("serve", "cat.png", 8123)

    def test_download_and_inscribe_submit_step_commands(
        self, orchestrator, pipeline, fake_executor
    ):
        orchestrator.run_all(pipeline)
        assert fake_executor.calls[1] == ("download", "cat.png", pipeline.steps[1].command_text)
        assert fake_executor.calls[2] == ("inscribe", pipeline.steps[2].command_text)

    def test_serve_failure_halts_before_download(self, orchestrator, pipeline, fake_executor):
        fake_executor.script("serve", failed("port 8123 in use"))

        result = orchestrator.run_all(pipeline)

        assert fake_executor.call_names == ["serve"]
        assert statuses(pipeline) == [StepStatus.ERROR, StepStatus.PENDING, StepStatus.PENDING]
        assert pipeline.steps[0].output == "port 8123 in use"
        assert result.success is False
        assert result.error_message == "port 8123 in use"

    def test_download_failure_records_failure_result(
        self, orchestrator, pipeline, fake_executor
    ):
        fake_executor.script("download", failed("container not found"))

        result = orchestrator.run_all(pipeline)

        assert statuses(pipeline) == [StepStatus.SUCCESS, StepStatus.ERROR, StepStatus.PENDING]
        assert result.error_message == "container not found"
        assert "inscribe" not in fake_executor.call_names

    def test_inscribe_failure_without_output_uses_placeholder(
        self, orchestrator, pipeline, fake_executor
    ):
        fake_executor.script("inscribe", failed(""))
        result = orchestrator.run_all(pipeline)
        assert result.success is False
        assert result.error_message == UNKNOWN_ERROR

    def test_transport_failure_marks_running_step(
        self, orchestrator, pipeline, fake_executor, transport_error
    ):
        fake_executor.script("download", transport_error)

        result = orchestrator.run_all(pipeline)

        assert pipeline.steps[1].status == StepStatus.ERROR
        assert pipeline.steps[1].output == str(transport_error)
        assert pipeline.steps[2].status == StepStatus.PENDING
        assert result.error_message == str(transport_error)

    def test_unexpected_remote_exception_is_a_step_failure(
        self, orchestrator, pipeline, fake_executor, diagnostics
    ):
        fake_executor.script("download", ConnectionResetError("peer reset"))

        result = orchestrator.run_all(pipeline)

        assert statuses(pipeline) == ["success", "error", "pending"]
        assert pipeline.steps[1].output == "peer reset"
        assert result.error_message == "peer reset"
        assert diagnostics.entries("transport_error")[0].message == "peer reset"

    def test_exception_without_message_uses_its_type(self, orchestrator, pipeline, fake_executor):
        fake_executor.script("serve", TimeoutError())
        result = orchestrator.run_all(pipeline)
        assert result.error_message == "TimeoutError"

    def test_reset_during_call_discards_late_response(
        self, orchestrator, pipeline, fake_executor
    ):
        fake_executor.hooks["download"] = lambda: orchestrator.reset(pipeline)

        assert orchestrator.run_all(pipeline) is None

        assert statuses(pipeline) == ["pending"] * 3
        assert pipeline.result is None
        assert pipeline.run == 1
        assert "inscribe" not in fake_executor.call_names

        del fake_executor.hooks["download"]
        assert orchestrator.run_all(pipeline).success

    def test_unreadable_upload_is_a_serve_failure(self, orchestrator, pipeline, fake_executor):
        fake_executor.script("serve", ResourceError("Uploaded file cat.png is not readable"))
        result = orchestrator.run_all(pipeline)
        assert pipeline.steps[0].status == StepStatus.ERROR
        assert result.success is False

    def test_empty_artifact_fields_become_none(self, orchestrator, pipeline, fake_executor):
        fake_executor.script("inscribe", ok("done", inscription_id="", transaction_id=""))
        result = orchestrator.run_all(pipeline)
        assert result.success is True
        assert result.inscription_id is None
        assert result.transaction_id is None

    def test_none_pipeline_is_noop(self, orchestrator, fake_executor):
        assert orchestrator.run_all(None) is None
        assert fake_executor.calls == []

    def test_second_run_requires_reset(self, orchestrator, pipeline):
        orchestrator.run_all(pipeline)
        with pytest.raises(ExecutionError):
            orchestrator.run_all(pipeline)

    def test_reset_allows_rerun(self, orchestrator, pipeline, fake_executor):
        fake_executor.script("serve", failed("busy"))
        orchestrator.run_all(pipeline)
        orchestrator.reset(pipeline)

        assert statuses(pipeline) == [StepStatus.PENDING] * 3
        assert pipeline.result is None
        assert pipeline.run == 1

        result = orchestrator.run_all(pipeline)
        assert result.success is True

    def test_failures_reach_diagnostics(self, orchestrator, pipeline, fake_executor, diagnostics):
        fake_executor.script("serve", failed("port 8123 in use"))
        orchestrator.run_all(pipeline)
        entries = diagnostics.entries()
        assert len(entries) == 1
        assert entries[0].kind == "step_error"
        assert entries[0].context["step"] == "serve"

    def test_guard_discards_updates(self, orchestrator, pipeline, fake_executor):
        from contextlib import contextmanager

        current = {"value": True}

        @contextmanager
        def guard():
            yield current["value"]

        fake_executor.hooks["serve"] = lambda: current.update(value=False)

        assert orchestrator.run_all(pipeline, guard=guard) is None
        assert pipeline.steps[0].status == StepStatus.RUNNING
        assert pipeline.steps[0].output == ""
        assert pipeline.result is None
        assert fake_executor.call_names == ["serve"]


class TestRunStepByStep:
    def test_arms_only_first_step(self, orchestrator, pipeline, fake_executor):
        assert orchestrator.run_step_by_step(pipeline) is True
        assert statuses(pipeline) == [StepStatus.READY, StepStatus.PENDING, StepStatus.PENDING]
        assert fake_executor.calls == []

    def test_not_rearmed_once_started(self, orchestrator, pipeline):
        orchestrator.run_step_by_step(pipeline)
        orchestrator.execute_step(pipeline, 0)
        assert orchestrator.run_step_by_step(pipeline) is False

    def test_none_pipeline(self, orchestrator):
        assert orchestrator.run_step_by_step(None) is False


class TestExecuteStep:
    def test_success_readies_next_step(self, orchestrator, pipeline):
        orchestrator.run_step_by_step(pipeline)
        step = orchestrator.execute_step(pipeline, 0)

        assert step.status == StepStatus.SUCCESS
        assert statuses(pipeline) == [StepStatus.SUCCESS, StepStatus.READY, StepStatus.PENDING]
        assert pipeline.result is None

    def test_inscribe_success_produces_result(self, orchestrator, pipeline, fake_executor):
        fake_executor.script(
            "inscribe",
            ok("inscribed", inscription_id="abc123", transaction_id="tx789", fee_paid="1500"),
        )
        orchestrator.execute_step(pipeline, 0)
        orchestrator.execute_step(pipeline, 1)
        step = orchestrator.execute_step(pipeline, 2)

        assert step.status == StepStatus.SUCCESS
        assert pipeline.result.success is True
        assert pipeline.result.inscription_id == "abc123"
        assert pipeline.result.transaction_id == "tx789"
        assert pipeline.result.fee_paid == "1500"

    def test_download_failure_has_no_result(self, orchestrator, pipeline, fake_executor):
        fake_executor.script("download", failed("container not found"))
        orchestrator.execute_step(pipeline, 0)
        step = orchestrator.execute_step(pipeline, 1)

        assert step.status == StepStatus.ERROR
        assert step.output == "container not found"
        assert pipeline.steps[2].status == StepStatus.PENDING
        assert pipeline.result is None

    def test_transport_failure_at_serve_has_no_result(
        self, orchestrator, pipeline, fake_executor, transport_error
    ):
        fake_executor.script("serve", transport_error)
        step = orchestrator.execute_step(pipeline, 0)
        assert step.status == StepStatus.ERROR
        assert step.output == str(transport_error)
        assert pipeline.result is None

    def test_unexpected_remote_exception_at_inscribe(self, orchestrator, pipeline, fake_executor):
        orchestrator.execute_step(pipeline, 0)
        orchestrator.execute_step(pipeline, 1)
        fake_executor.script("inscribe", OSError("broken pipe"))

        step = orchestrator.execute_step(pipeline, 2)

        assert step.status == StepStatus.ERROR
        assert pipeline.result.error_message == "broken pipe"

    def test_reset_during_step_discards_late_response(
        self, orchestrator, pipeline, fake_executor
    ):
        fake_executor.hooks["serve"] = lambda: orchestrator.reset(pipeline)

        assert orchestrator.execute_step(pipeline, 0) is None
        assert statuses(pipeline) == ["pending"] * 3

        del fake_executor.hooks["serve"]
        assert orchestrator.execute_step(pipeline, 0).status == StepStatus.SUCCESS

    def test_inscribe_failure_produces_failure_result(
        self, orchestrator, pipeline, fake_executor
    ):
        fake_executor.script("inscribe", failed("insufficient funds"))
        for i in range(3):
            orchestrator.execute_step(pipeline, i)
        assert pipeline.steps[2].status == StepStatus.ERROR
        assert pipeline.result.success is False
        assert pipeline.result.error_message == "insufficient funds"

    def test_inscribe_transport_failure_produces_failure_result(
        self, orchestrator, pipeline, fake_executor
    ):
        fake_executor.script("inscribe", TransportError("502: bad gateway"))
        for i in range(3):
            orchestrator.execute_step(pipeline, i)
        assert pipeline.result.error_message == "502: bad gateway"

    def test_retry_overwrites_output(self, orchestrator, pipeline, fake_executor):
        fake_executor.script("serve", failed("first failure"), ok("served"))

        first = orchestrator.execute_step(pipeline, 0)
        assert first.status == StepStatus.ERROR
        assert first.output == "first failure"

        second = orchestrator.execute_step(pipeline, 0)
        assert second.status == StepStatus.SUCCESS
        assert second.output == "served"
        assert fake_executor.call_names == ["serve", "serve"]

    def test_repeated_failures_do_not_accumulate(self, orchestrator, pipeline, fake_executor):
        fake_executor.script("serve", failed("a"), failed("b"))
        orchestrator.execute_step(pipeline, 0)
        step = orchestrator.execute_step(pipeline, 0)
        assert step.output == "b"

    def test_inscribe_retry_after_try_again(self, orchestrator, pipeline, fake_executor):
        fake_executor.script("inscribe", failed("mempool full"))
        for i in range(3):
            orchestrator.execute_step(pipeline, i)

        with pytest.raises(ExecutionError):
            orchestrator.execute_step(pipeline, 2)

        orchestrator.clear_result(pipeline)
        step = orchestrator.execute_step(pipeline, 2)
        assert step.status == StepStatus.SUCCESS
        assert pipeline.result.success is True

    def test_cannot_skip_ahead(self, orchestrator, pipeline, fake_executor):
        with pytest.raises(ExecutionError):
            orchestrator.execute_step(pipeline, 1)
        assert pipeline.steps[1].status == StepStatus.PENDING
        assert fake_executor.calls == []

    def test_cannot_rerun_successful_step(self, orchestrator, pipeline):
        orchestrator.execute_step(pipeline, 0)
        with pytest.raises(ExecutionError):
            orchestrator.execute_step(pipeline, 0)

    @pytest.mark.parametrize("index", [-1, 3, 10])
    def test_out_of_range_is_noop(self, orchestrator, pipeline, fake_executor, index):
        assert orchestrator.execute_step(pipeline, index) is None
        assert fake_executor.calls == []

    def test_missing_pipeline_is_noop(self, orchestrator):
        assert orchestrator.execute_step(None, 0) is None


class TestEvents:
    def test_transitions_are_pushed_in_order(self, fake_executor, pipeline):
        orchestrator = Orchestrator(fake_executor, default_port=8000)
        seen = []
        orchestrator.events.subscribe(lambda e: seen.append((e.kind, e.step_index, e.status)))

        orchestrator.run_all(pipeline)

        assert seen == [
            (EventKind.STEP_CHANGED, 0, "running"),
            (EventKind.STEP_CHANGED, 0, "success"),
            (EventKind.STEP_CHANGED, 1, "running"),
            (EventKind.STEP_CHANGED, 1, "success"),
            (EventKind.STEP_CHANGED, 2, "running"),
            (EventKind.STEP_CHANGED, 2, "success"),
            (EventKind.RESULT_SET, None, "success"),
        ]

    def test_unsubscribe(self, pipeline):
        orchestrator = Orchestrator(FakeExecutor(), default_port=8000)
        seen = []
        unsubscribe = orchestrator.events.subscribe(seen.append)
        unsubscribe()
        orchestrator.run_all(pipeline)
        assert seen == []

    def test_failing_listener_does_not_break_run(self, pipeline):
        orchestrator = Orchestrator(FakeExecutor(), default_port=8000)

        def broken(event):
            raise RuntimeError("listener bug")

        orchestrator.events.subscribe(broken)
        result = orchestrator.run_all(pipeline)
        assert result.success is True
