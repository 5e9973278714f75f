"""Shared test fixtures and a scripted stand-in for the remote endpoint."""

import tempfile
from collections import defaultdict, deque
from collections.abc import Callable
from pathlib import Path

import pytest

from ordinscribe.models.batch import Batch, BatchItem
from ordinscribe.models.errors import TransportError
from ordinscribe.models.options import InscriptionOptions
from ordinscribe.models.pipeline import CommandsData, FileRef, Pipeline
from ordinscribe.models.remote import GeneratedCommands, StepResponse
from ordinscribe.orchestrator.executor import Orchestrator
from ordinscribe.storage.diagnostics import DiagnosticsSink

SERVE_COMMAND = "python3 -m http.server 8123"
DOWNLOAD_COMMAND = (
    'docker exec -it ord sh -c "curl -o /ord/data/cat.png http://10.0.0.2:8123/cat.png"'
)
INSCRIBE_COMMAND = (
    "docker exec -it ord ord wallet inscribe --fee-rate 12 --file /ord/data/cat.png"
)


def ok(output: str = "ok", **extra) -> StepResponse:
    return StepResponse(output=output, error=False, **extra)


def failed(output: str) -> StepResponse:
    return StepResponse(output=output, error=True)


class FakeExecutor:
    """RemoteExecutor returning scripted responses and recording every call.

    Unscripted calls succeed. A scripted Exception is raised instead of returned.
    """

    def __init__(self):
        self.scripts: dict[str, deque] = defaultdict(deque)
        self.calls: list[tuple] = []
        self.hooks: dict[str, Callable[[], None]] = {}

    def script(self, call: str, *responses) -> "FakeExecutor":
        self.scripts[call].extend(responses)
        return self

    def serve(self, file_ref, port):
        self.calls.append(("serve", file_ref.name, port))
        return self._next("serve", ok(f"Serving HTTP on 0.0.0.0 port {port}..."))

    def download(self, file_name, command):
        self.calls.append(("download", file_name, command))
        return self._next("download", ok("File downloaded successfully to container"))

    def inscribe(self, command):
        self.calls.append(("inscribe", command))
        return self._next(
            "inscribe",
            ok("inscribed", inscription_id="abc123i0", transaction_id="tx1", fee_paid="1,000 sats"),
        )

    def generate_commands(self, file_ref, options):
        self.calls.append(("generate", file_ref.name))
        return self._next(
            "generate",
            GeneratedCommands(
                commands=[SERVE_COMMAND, DOWNLOAD_COMMAND, INSCRIBE_COMMAND],
                file_name=file_ref.name,
            ),
        )

    @property
    def call_names(self) -> list[str]:
        return [c[0] for c in self.calls]

    def _next(self, call: str, default):
        hook = self.hooks.get(call)
        if hook is not None:
            hook()
        queue = self.scripts[call]
        response = queue.popleft() if queue else default
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture
def tmp_dir():
    """Provide a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as d:
        yield Path(d)


@pytest.fixture
def upload_file(tmp_dir):
    path = tmp_dir / "cat.png"
    path.write_bytes(b"\x89PNG\r\n\x1a\n" + b"\x00" * 64)
    return path


@pytest.fixture
def fake_executor():
    return FakeExecutor()


@pytest.fixture
def diagnostics():
    return DiagnosticsSink(max_entries=50)


@pytest.fixture
def orchestrator(fake_executor, diagnostics):
    return Orchestrator(fake_executor, diagnostics=diagnostics, default_port=8000)


@pytest.fixture
def sample_options():
    return InscriptionOptions(container_name="ord", fee_rate=12)


def make_pipeline(path: Path, name: str = "cat.png") -> Pipeline:
    return Pipeline(
        file_ref=FileRef(name=name, path=path, content_type="image/png", size=72),
        commands=CommandsData(
            commands=[SERVE_COMMAND, DOWNLOAD_COMMAND, INSCRIBE_COMMAND], file_name=name
        ),
    )


def make_batch(path: Path, count: int) -> Batch:
    items = [
        BatchItem(display_name=f"file_{i}.png", pipeline=make_pipeline(path, f"file_{i}.png"))
        for i in range(count)
    ]
    return Batch(items=items)


@pytest.fixture
def pipeline(upload_file):
    return make_pipeline(upload_file)


@pytest.fixture
def transport_error():
    return TransportError("Request timeout after 60.0 seconds.")
