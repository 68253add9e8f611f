"""
Agendify service: X/Twitter OAuth2 (PKCE) login, durable job queue for publishing,
and the twice-daily engagement metrics trigger.
"""
import logging
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse

from agendify.auth import router as auth_router
from agendify.config import ENGAGEMENT_UPDATE_ENABLED, LOG_LEVEL, PORT
from agendify.database import SessionLocal, init_db
from agendify.engagement import EngagementTrigger
from agendify.flow_store import FlowStore
from agendify.job_queue import JobQueue
from agendify.job_status import router as job_status_router
from agendify.publisher import load_jobs
from agendify.token_store import TokenStore
from agendify.twitter import TwitterClient

logger = logging.getLogger(__name__)


def configure_logging(level: str = LOG_LEVEL) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        stream=sys.stdout,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables (fails without DATABASE_URL), register jobs, start the queue and trigger."""
    configure_logging()
    init_db()
    logger.info("Connected to database")

    queue: JobQueue = app.state.job_queue
    load_jobs(queue, TwitterClient(app.state.token_store))
    await queue.start()

    trigger = None
    if ENGAGEMENT_UPDATE_ENABLED:
        trigger = EngagementTrigger()
        trigger.start()
    try:
        yield
    finally:
        if trigger is not None:
            trigger.shutdown()
        await queue.stop()


app = FastAPI(title="Agendify", version="0.1.0", lifespan=lifespan)
app.state.token_store = TokenStore()
app.state.flow_store = FlowStore()
app.state.job_queue = JobQueue(SessionLocal)
app.include_router(auth_router, tags=["auth"])
app.include_router(job_status_router)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    logger.info("%s %s", request.method, request.url.path)
    return await call_next(request)


@app.get("/", response_class=PlainTextResponse)
def root():
    return "OK"


@app.get("/healthz")
def healthz():
    """Health check endpoint."""
    return {"ok": True}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "agendify.main:app",
        host="0.0.0.0",
        port=PORT,
    )
