"""FastAPI application factory and server entry point."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .. import __version__
from .. import config as _cfg
from ..utils.logging import configure_logging
from .collaborators import Collaborators
from .config import ApiSettings
from .deps.providers import Services, build_services, get_settings
from .errors import register_error_handlers

logger = logging.getLogger(__name__)


def _log_config_issues() -> None:
    issues = _cfg.validate_config()
    for issue in issues:
        level = issue.get("level", "WARNING")
        msg = issue.get("message", "")
        if level == "ERROR":
            logger.error("Config validation: %s", msg)
        else:
            logger.warning("Config validation: %s", msg)
    if not issues:
        logger.info("Config validation: all checks passed")


@asynccontextmanager
async def _lifespan(app: FastAPI):
    """Startup / shutdown lifecycle."""
    services: Services = app.state.services
    settings = services.settings

    configure_logging(settings.log_level or _cfg.LOG_LEVEL, _cfg.LOG_FORMAT)
    logger.info("Starting bookrelay API on %s:%s", settings.host, settings.port)
    _log_config_issues()

    await services.startup()

    yield

    await services.shutdown()
    logger.info("Shutting down bookrelay API")


def create_app(
    settings: ApiSettings | None = None,
    services: Services | None = None,
    collaborators: Collaborators | None = None,
) -> FastAPI:
    """Build and return the FastAPI application.

    Parameters
    ----------
    settings : ApiSettings, optional
        Server settings; read from the environment when omitted.
    services : Services, optional
        A pre-built service container.  Tests pass their own to control
        stores and collaborators.
    collaborators : Collaborators, optional
        External discovery/fetch/sync implementations used when
        ``services`` is not given.
    """
    if services is None:
        services = build_services(settings or get_settings(), collaborators)
    settings = services.settings

    app = FastAPI(
        title="bookrelay API",
        description="Background job orchestration for discovering, fetching, chunking and syncing book content.",
        version=__version__,
        lifespan=_lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )
    app.state.services = services

    # CORS
    origins = [o.strip() for o in settings.cors_origins.split(",")]
    allow_creds = "*" not in origins
    if not allow_creds:
        logger.warning(
            "CORS origins contain '*'. Credentials will NOT be allowed. "
            "Set explicit origins for credentialed cross-origin requests."
        )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=allow_creds,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_error_handlers(app)

    from .routers import all_routers

    for router in all_routers():
        app.include_router(router)

    return app


def run_server() -> None:
    """CLI entry point: ``python -m bookrelay.api.main``."""
    import uvicorn

    settings = get_settings()
    app = create_app(settings)
    uvicorn.run(app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    run_server()
