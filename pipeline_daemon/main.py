"""Pipeline daemon - FastAPI application hosting the scheduler."""

from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI

from pipeline_daemon.api.v1 import health as health_api
from pipeline_daemon.api.v1 import scheduler as scheduler_api
from pipeline_daemon.api.v1.health import router as health_root_router
from pipeline_daemon.api.v1.router import v1_router
from pipeline_daemon.config import Settings, load_settings
from pipeline_daemon.db.project_api import ProjectApi
from pipeline_daemon.db.supabase_client import create_supabase
from pipeline_daemon.db.supabase_project_api import SupabaseProjectApi
from pipeline_daemon.generation.base import Generators
from pipeline_daemon.generation.cli import CliGenerators
from pipeline_daemon.jobs.dispatcher import PhaseDispatcher
from pipeline_daemon.jobs.scheduler import Scheduler, verify_health
from pipeline_daemon.logging_config import get_logger, setup_logging
from pipeline_daemon.phases.base import PhaseContext
from pipeline_daemon.storage.workspace import WorkspaceStore

logger = get_logger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    api: Optional[ProjectApi] = None,
    generators: Optional[Generators] = None,
    verify_workspaces: bool = True,
) -> FastAPI:
    """Build the app. Collaborators default to the production ones."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup and shutdown logic."""
        cfg = settings or load_settings()
        setup_logging(cfg)
        if verify_workspaces:
            cfg.ensure_workspaces()

        project_api = api or SupabaseProjectApi(
            create_supabase(cfg), cfg.daemon_id, cfg.storage_bucket
        )
        logger.info(
            "Starting pipeline daemon",
            daemon_id=cfg.daemon_id,
            max_concurrency=cfg.max_concurrency,
            interval_ms=cfg.interval_ms,
            projects_workspace=cfg.projects_workspace,
            fake_cli=cfg.fake_cli,
        )

        if not await verify_health(project_api, cfg):
            raise RuntimeError("Remote store is not healthy, refusing to start")

        ctx = PhaseContext(
            api=project_api,
            generators=generators or CliGenerators(cfg),
            settings=cfg,
            workspaces=WorkspaceStore(cfg.projects_workspace),
        )
        scheduler = Scheduler(project_api, PhaseDispatcher(ctx), cfg)
        await scheduler.start()

        # Wire scheduler into API endpoints
        health_api.set_scheduler(scheduler)
        scheduler_api.set_scheduler(scheduler)
        app.state.scheduler = scheduler

        yield

        logger.info("Shutting down pipeline daemon")
        await scheduler.stop()

    app = FastAPI(
        title="Pipeline Daemon",
        description="Orchestrates the multi-language content pipeline",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.include_router(health_root_router, tags=["health"])  # GET /health at root
    app.include_router(v1_router)  # All /api/v1/* endpoints
    return app


app = create_app()


def run() -> None:
    settings = load_settings()
    uvicorn.run(
        create_app(settings),
        host="0.0.0.0",
        port=settings.http_port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
