"""Data models for the inscription orchestrator."""

from ordinscribe.models.batch import Batch, BatchItem, BatchItemStatus
from ordinscribe.models.errors import (
    ErrorResponse,
    ExecutionError,
    InscribeError,
    ResourceError,
    TransportError,
    ValidationError,
)
from ordinscribe.models.options import InscriptionOptions, parse_options
from ordinscribe.models.pipeline import CommandsData, FileRef, InscriptionResult, Pipeline
from ordinscribe.models.remote import GeneratedCommands, StepResponse
from ordinscribe.models.step import Step, StepName, StepStatus

__all__ = [
    "Batch",
    "BatchItem",
    "BatchItemStatus",
    "CommandsData",
    "ErrorResponse",
    "ExecutionError",
    "FileRef",
    "GeneratedCommands",
    "InscribeError",
    "InscriptionOptions",
    "InscriptionResult",
    "Pipeline",
    "ResourceError",
    "Step",
    "StepName",
    "StepResponse",
    "StepStatus",
    "TransportError",
    "ValidationError",
    "parse_options",
]
