"""Single-file pipeline endpoints."""

from fastapi import APIRouter, BackgroundTasks, Depends, Form, UploadFile

from ordinscribe.api.dependencies import get_inscription_manager
from ordinscribe.models.errors import ExecutionError, ValidationError
from ordinscribe.models.options import parse_options
from ordinscribe.models.pipeline import PIPELINE_LENGTH, Pipeline
from ordinscribe.pipeline.manager import InscriptionManager

router = APIRouter(prefix="/api/v1", tags=["pipelines"])


def pipeline_view(pipeline: Pipeline) -> dict:
    """Render a pipeline without the server-side upload path."""
    data = pipeline.model_dump(mode="json", exclude={"file_ref": {"path"}})
    data["active"] = pipeline.is_active
    return data


@router.post("/pipelines")
def create_pipeline(
    file: UploadFile,
    config: str = Form(...),
    manager: InscriptionManager = Depends(get_inscription_manager),
):
    """Upload a file and generate its serve/download/inscribe commands."""
    if not file.filename:
        raise ValidationError("No filename provided")
    options = parse_options(config)
    pipeline = manager.create_pipeline(file.filename, file.file, options, file.content_type)
    return pipeline_view(pipeline)


@router.get("/pipelines/{pipeline_id}")
def get_pipeline(
    pipeline_id: str,
    manager: InscriptionManager = Depends(get_inscription_manager),
):
    return pipeline_view(manager.require_pipeline(pipeline_id))


@router.post("/pipelines/{pipeline_id}/run-all")
def run_all(
    pipeline_id: str,
    background_tasks: BackgroundTasks,
    manager: InscriptionManager = Depends(get_inscription_manager),
):
    """Run every step in the background; poll or subscribe for progress."""
    pipeline = manager.require_pipeline(pipeline_id)
    if pipeline.running_step is not None or pipeline.result is not None:
        raise ExecutionError(f"Pipeline {pipeline_id} has already run; reset it first")
    background_tasks.add_task(manager.run_all, pipeline_id)
    return {"pipeline_id": pipeline_id, "status": "running", "message": "Execution started"}


@router.post("/pipelines/{pipeline_id}/step-by-step")
def run_step_by_step(
    pipeline_id: str,
    manager: InscriptionManager = Depends(get_inscription_manager),
):
    armed = manager.run_step_by_step(pipeline_id)
    return {"pipeline_id": pipeline_id, "manual": armed}


@router.post("/pipelines/{pipeline_id}/steps/{index}")
def execute_step(
    pipeline_id: str,
    index: int,
    manager: InscriptionManager = Depends(get_inscription_manager),
):
    """Execute one step and wait for it to settle."""
    if not 0 <= index < PIPELINE_LENGTH:
        raise ValidationError(f"Step index must be between 0 and {PIPELINE_LENGTH - 1}")
    manager.execute_step(pipeline_id, index)
    return pipeline_view(manager.require_pipeline(pipeline_id))


@router.post("/pipelines/{pipeline_id}/reset")
def reset_pipeline(
    pipeline_id: str,
    manager: InscriptionManager = Depends(get_inscription_manager),
):
    return pipeline_view(manager.reset(pipeline_id))


@router.post("/pipelines/{pipeline_id}/try-again")
def try_again(
    pipeline_id: str,
    manager: InscriptionManager = Depends(get_inscription_manager),
):
    return pipeline_view(manager.try_again(pipeline_id))


@router.delete("/pipelines/{pipeline_id}")
def remove_pipeline(
    pipeline_id: str,
    manager: InscriptionManager = Depends(get_inscription_manager),
):
    if not manager.remove_pipeline(pipeline_id):
        raise ValidationError(f"Pipeline {pipeline_id} not found")
    return {"pipeline_id": pipeline_id, "status": "removed"}
