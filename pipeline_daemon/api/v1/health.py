"""Health check endpoint."""

import platform
import sys

from fastapi import APIRouter

router = APIRouter()

# Set by main.py during lifespan
_scheduler = None


def set_scheduler(scheduler):
    global _scheduler
    _scheduler = scheduler


@router.get("/health")
async def health_check():
    """Daemon liveness and runtime info."""
    running = bool(_scheduler and _scheduler.running)
    return {
        "status": "healthy" if running else "starting",
        "scheduler_running": running,
        "python_version": sys.version,
        "platform": platform.platform(),
    }
