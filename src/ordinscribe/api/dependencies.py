"""Dependency injection providers for FastAPI."""

from functools import lru_cache

from ordinscribe.config import Settings, get_settings
from ordinscribe.pipeline.manager import InscriptionManager
from ordinscribe.storage.diagnostics import DiagnosticsSink


@lru_cache
def get_diagnostics() -> DiagnosticsSink:
    settings = get_settings()
    return DiagnosticsSink(settings.diagnostics_max_entries, settings.diagnostics_log_dir)


@lru_cache
def get_inscription_manager() -> InscriptionManager:
    return InscriptionManager(diagnostics=get_diagnostics())


def get_app_settings() -> Settings:
    return get_settings()
