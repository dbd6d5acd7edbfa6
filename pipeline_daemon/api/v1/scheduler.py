"""Scheduler status API: capacity and in-flight tasks."""

from fastapi import APIRouter, HTTPException

router = APIRouter()

# Set by main.py during lifespan
_scheduler = None


def set_scheduler(scheduler):
    global _scheduler
    _scheduler = scheduler


@router.get("/scheduler")
async def scheduler_status():
    if _scheduler is None:
        raise HTTPException(status_code=503, detail="Scheduler not initialized")
    return _scheduler.snapshot()


@router.get("/scheduler/in-flight/{project_id}")
async def in_flight_entry(project_id: str):
    if _scheduler is None:
        raise HTTPException(status_code=503, detail="Scheduler not initialized")
    entry = _scheduler.in_flight.get(project_id)
    if entry is None:
        raise HTTPException(status_code=404, detail="Project not in flight")
    return entry.as_dict()
