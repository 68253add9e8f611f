"""
Read-only view of the job queue: GET /api/jobs with optional filters.
"""
from fastapi import APIRouter, Request

router = APIRouter(tags=["jobs"])


@router.get("/api/jobs")
async def list_jobs(request: Request, name: str | None = None, status: str | None = None, limit: int = 100):
    """Persisted jobs with status, schedule and last failure. Most recent first."""
    queue = request.app.state.job_queue
    return await queue.ajobs(name=name or None, status=status or None, limit=max(1, limit))
