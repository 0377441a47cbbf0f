"""Dependency injection providers."""
from .auth import require_auth
from .providers import (
    Services,
    build_services,
    get_job_service,
    get_job_store,
    get_progress_hub,
    get_registry,
    get_runtime_config,
    get_services,
    get_settings,
)

__all__ = [
    "Services",
    "build_services",
    "get_job_service",
    "get_job_store",
    "get_progress_hub",
    "get_registry",
    "get_runtime_config",
    "get_services",
    "get_settings",
    "require_auth",
]
