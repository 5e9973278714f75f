"""Diagnostics endpoints."""

from fastapi import APIRouter, Depends

from ordinscribe.api.dependencies import get_diagnostics
from ordinscribe.storage.diagnostics import DiagnosticsSink

router = APIRouter(prefix="/api/v1", tags=["diagnostics"])


@router.get("/diagnostics")
def list_diagnostics(
    kind: str | None = None,
    diagnostics: DiagnosticsSink = Depends(get_diagnostics),
):
    entries = diagnostics.entries(kind)
    return {
        "count": len(entries),
        "max_entries": diagnostics.max_entries,
        "entries": [e.model_dump(mode="json") for e in entries],
    }


@router.delete("/diagnostics")
def clear_diagnostics(diagnostics: DiagnosticsSink = Depends(get_diagnostics)):
    diagnostics.clear()
    return {"status": "cleared"}
