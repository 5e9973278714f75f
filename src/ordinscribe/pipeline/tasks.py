"""Celery task definitions."""

from pathlib import Path

from celery import Celery

from ordinscribe.config import get_settings

settings = get_settings()

celery_app = Celery(
    "ordinscribe",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
)
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
)


@celery_app.task(bind=True, name="ordinscribe.run_pipeline")
def run_pipeline_task(
    self,
    file_path: str,
    commands: list[str],
    file_name: str | None = None,
    content_type: str | None = None,
):
    """Celery task running Orchestrator.run_all() for one already generated pipeline."""
    from ordinscribe.models.pipeline import CommandsData, FileRef, Pipeline
    from ordinscribe.orchestrator.executor import Orchestrator
    from ordinscribe.remote.client import HttpRemoteExecutor
    from ordinscribe.storage.diagnostics import DiagnosticsSink

    path = Path(file_path)
    name = file_name or path.name
    executor = HttpRemoteExecutor()
    diagnostics = DiagnosticsSink(settings.diagnostics_max_entries, settings.diagnostics_log_dir)
    orchestrator = Orchestrator(executor, diagnostics)

    try:
        pipeline = Pipeline(
            file_ref=FileRef(
                name=name,
                path=path,
                content_type=content_type or "application/octet-stream",
            ),
            commands=CommandsData(commands=commands, file_name=name),
        )
        result = orchestrator.run_all(pipeline)
        return {
            "pipeline_id": pipeline.pipeline_id,
            "status": "completed" if result and result.success else "failed",
            "result": result.model_dump() if result else None,
            "steps": [step.model_dump(mode="json") for step in pipeline.steps],
        }
    except Exception as e:
        return {
            "pipeline_id": None,
            "status": "failed",
            "error": str(e),
        }
    finally:
        executor.close()
