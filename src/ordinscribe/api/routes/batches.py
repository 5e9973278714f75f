"""Batch endpoints."""

from fastapi import APIRouter, BackgroundTasks, Depends, Form, UploadFile

from ordinscribe.api.dependencies import get_inscription_manager
from ordinscribe.api.routes.pipelines import pipeline_view
from ordinscribe.models.batch import Batch
from ordinscribe.models.errors import ValidationError
from ordinscribe.models.options import parse_options
from ordinscribe.pipeline.manager import InscriptionManager

router = APIRouter(prefix="/api/v1", tags=["batches"])


def batch_view(batch: Batch) -> dict:
    return {
        "batch_id": batch.batch_id,
        "in_progress": batch.in_progress,
        "cursor": batch.cursor,
        "completed_count": batch.completed_count,
        "failed_count": batch.failed_count,
        "processed_count": batch.processed_count,
        "total": len(batch.items),
        "percent_complete": batch.percent_complete,
        "summary": batch.summary(),
        "items": [
            {
                "item_id": item.item_id,
                "display_name": item.display_name,
                "status": item.lifecycle_status.value,
                "progress": item.progress,
                "last_error": item.last_error,
                "pipeline": pipeline_view(item.pipeline),
            }
            for item in batch.items
        ],
    }


@router.post("/batches")
def create_batch(
    files: list[UploadFile],
    config: str = Form(...),
    manager: InscriptionManager = Depends(get_inscription_manager),
):
    """Upload several files; each gets its own pipeline, in upload order."""
    if any(not f.filename for f in files):
        raise ValidationError("Every uploaded file needs a filename")
    options = parse_options(config)
    batch = manager.create_batch([(f.filename, f.file, f.content_type) for f in files], options)
    return batch_view(batch)


@router.get("/batches/{batch_id}")
def get_batch(
    batch_id: str,
    manager: InscriptionManager = Depends(get_inscription_manager),
):
    return batch_view(manager.require_batch(batch_id))


@router.post("/batches/{batch_id}/start")
def start_batch(
    batch_id: str,
    background_tasks: BackgroundTasks,
    manager: InscriptionManager = Depends(get_inscription_manager),
):
    """Start (or continue) processing the pending items of a batch."""
    epoch = manager.begin_batch(batch_id)
    background_tasks.add_task(manager.drive_batch, batch_id, epoch)
    return {"batch_id": batch_id, "status": "processing", "epoch": epoch}


@router.post("/batches/{batch_id}/cancel")
def cancel_batch(
    batch_id: str,
    manager: InscriptionManager = Depends(get_inscription_manager),
):
    return batch_view(manager.cancel_batch(batch_id))


@router.delete("/batches/{batch_id}")
def remove_batch(
    batch_id: str,
    manager: InscriptionManager = Depends(get_inscription_manager),
):
    if not manager.remove_batch(batch_id):
        raise ValidationError(f"Batch {batch_id} not found")
    return {"batch_id": batch_id, "status": "removed"}
