"""Aggregate all v1 API routers."""

from fastapi import APIRouter
from pipeline_daemon.api.v1.health import router as health_router
from pipeline_daemon.api.v1.scheduler import router as scheduler_router

v1_router = APIRouter(prefix="/api/v1")
v1_router.include_router(health_router, tags=["health"])
v1_router.include_router(scheduler_router, tags=["scheduler"])
