"""
Startup job registration. Job names are shared with the agenda service that schedules them.
"""
import logging
from typing import Any

from agendify.errors import JobHandlerError
from agendify.job_queue import JobQueue
from agendify.twitter import TwitterClient

logger = logging.getLogger(__name__)

PUBLISH_POST = "publish post"


def load_jobs(queue: JobQueue, client: TwitterClient) -> None:
    """Define every job handler on the queue. Safe to call again: handlers are replaced."""

    async def publish_post(data: dict[str, Any]) -> None:
        text = (data.get("text") or "").strip()
        if not text:
            raise JobHandlerError("publish post: data.text is required")
        tweet = await client.create_tweet(text)
        logger.info("Published post agenda_id=%s tweet_id=%s", data.get("agenda_id"), tweet.get("id"))

    queue.define(PUBLISH_POST, publish_post)
