"""Client for the remote execution endpoint on the Ordinals node."""

import logging
from typing import Protocol

import httpx
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from ordinscribe.config import get_settings
from ordinscribe.models.errors import TransportError
from ordinscribe.models.options import InscriptionOptions
from ordinscribe.models.pipeline import FileRef
from ordinscribe.models.remote import GeneratedCommands, StepResponse

logger = logging.getLogger(__name__)


class RemoteExecutor(Protocol):
    """The remote boundary the orchestrator drives, one call per step."""

    def serve(self, file_ref: FileRef, port: int) -> StepResponse: ...

    def download(self, file_name: str, command: str) -> StepResponse: ...

    def inscribe(self, command: str) -> StepResponse: ...

    def generate_commands(
        self, file_ref: FileRef, options: InscriptionOptions
    ) -> GeneratedCommands: ...


class HttpRemoteExecutor:
    """RemoteExecutor over HTTP.

    The remote reports step failures as HTTP 500 with a JSON ``{"error": true,
    "output": ...}`` body; those are returned as failed StepResponses. Anything
    else that is not a 2xx JSON body raises TransportError.
    """

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        client: httpx.Client | None = None,
    ):
        settings = get_settings()
        self.base_url = (base_url or settings.api_base_url).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.request_timeout_seconds
        self.client = client or httpx.Client(base_url=self.base_url, timeout=self.timeout)

    def close(self) -> None:
        self.client.close()

    def serve(self, file_ref: FileRef, port: int) -> StepResponse:
        files = {"file": (file_ref.name, file_ref.read_bytes(), file_ref.content_type)}
        return self._step("/api/execute/serve", files=files, data={"port": str(port)})

    def download(self, file_name: str, command: str) -> StepResponse:
        return self._step(
            "/api/execute/download", json={"fileName": file_name, "command": command}
        )

    def inscribe(self, command: str) -> StepResponse:
        return self._step("/api/execute/inscribe", json={"command": command})

    def generate_commands(
        self, file_ref: FileRef, options: InscriptionOptions
    ) -> GeneratedCommands:
        files = {"file": (file_ref.name, file_ref.read_bytes(), file_ref.content_type)}
        response = self._post(
            "/api/commands/generate", files=files, data={"config": options.to_payload()}
        )
        if not response.is_success:
            raise TransportError(
                f"Command generation failed with HTTP {response.status_code}",
                details={"status": response.status_code, "body": response.text[:500]},
            )
        return self._parse(response, GeneratedCommands)

    def _step(self, path: str, **kwargs) -> StepResponse:
        response = self._post(path, **kwargs)
        if response.is_success:
            return self._parse(response, StepResponse)

        # Step failures come back as 500 with a structured body
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict) and body.get("error") is True:
            return self._parse(response, StepResponse)
        raise TransportError(
            f"{response.status_code}: {response.text or response.reason_phrase}",
            details={"path": path, "status": response.status_code},
        )

    def _post(self, path: str, **kwargs) -> httpx.Response:
        logger.debug(f"POST {self.base_url}{path}")
        try:
            return self.client.post(path, **kwargs)
        except httpx.TimeoutException as e:
            raise TransportError(
                f"Request timeout after {self.timeout} seconds. "
                "The operation took too long to complete.",
                details={"path": path, "reason": str(e)},
            )
        except httpx.HTTPError as e:
            raise TransportError(f"Request to {path} failed: {e}", details={"path": path})

    @staticmethod
    def _parse(response: httpx.Response, model: type[BaseModel]):
        try:
            return model.model_validate(response.json())
        except ValueError as e:
            # PydanticValidationError subclasses ValueError, as does JSONDecodeError
            kind = "shape" if isinstance(e, PydanticValidationError) else "json"
            raise TransportError(
                f"Malformed response from {response.request.url.path}",
                details={"kind": kind, "body": response.text[:500]},
            )
