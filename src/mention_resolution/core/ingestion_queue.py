"""
Work queue for article ingestion with retrying workers
"""
import asyncio
import json
import logging
import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

import redis.asyncio as redis
from pydantic import BaseModel, Field

from src.mention_resolution.core.entities import Article
from src.mention_resolution.core.exceptions import TransientError
from src.mention_resolution.core.orchestrator import TRANSIENT_ERROR_PREFIX
from config.settings import settings

logger = logging.getLogger(__name__)


class JobStatus(str, Enum):
    """Status of an ingestion job."""

    PENDING = "pending"
    PROCESSING = "processing"
    RETRYING = "retrying"
    COMPLETED = "completed"
    FAILED = "failed"


class ArticleSubmission(BaseModel):
    """Article handed over by a feed, webhook or fetcher."""

    outlet: str = ""
    title: str = ""
    url: str = ""
    language: str = "es"
    published_at: Optional[datetime] = None
    raw_text: str = Field(..., description="Full article text")

    def to_article(self, article_id: str) -> Article:
        return Article(
            id=article_id,
            raw_text=self.raw_text,
            language=self.language,
            outlet=self.outlet,
            title=self.title,
            url=self.url,
            published_at=self.published_at,
        )


class IngestionJob(BaseModel):
    """State of one queued article."""

    job_id: str
    article_id: str
    status: JobStatus = JobStatus.PENDING
    attempts: int = 0
    error: Optional[str] = None
    result: Optional[Dict[str, Any]] = None
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


def _apply_update(
    job: IngestionJob,
    status: Optional[JobStatus],
    attempts: Optional[int],
    error: Optional[str],
    result: Optional[Dict[str, Any]]
) -> None:
    job.updated_at = datetime.now()

    if status:
        job.status = status

        if status == JobStatus.PROCESSING and not job.started_at:
            job.started_at = job.updated_at
        elif status in (JobStatus.COMPLETED, JobStatus.FAILED) and not job.completed_at:
            job.completed_at = job.updated_at

    if attempts is not None:
        job.attempts = attempts

    if error:
        job.error = error

    if result is not None:
        job.result = result


class JobQueue:
    """Redis-based job queue (LPUSH/BRPOP) for article ingestion."""

    def __init__(
        self,
        redis_url: Optional[str] = None,
        queue_name: Optional[str] = None,
        result_ttl: Optional[int] = None,
    ):
        self.redis_url = redis_url or settings.redis_url
        self.queue_name = queue_name or settings.job_queue_name
        self.result_ttl = result_ttl or settings.job_result_ttl
        self._redis: Optional[redis.Redis] = None

    async def connect(self):
        """Connect to Redis."""
        if not self._redis:
            self._redis = await redis.from_url(
                self.redis_url, encoding="utf-8", decode_responses=True
            )

    async def disconnect(self):
        """Disconnect from Redis."""
        if self._redis:
            await self._redis.close()
            self._redis = None

    @staticmethod
    def _job_key(job_id: str) -> str:
        return f"job:{job_id}"

    async def enqueue(self, submission: ArticleSubmission) -> str:
        """Add an article to the queue; returns the job id immediately."""
        await self.connect()

        job = IngestionJob(job_id=str(uuid.uuid4()), article_id=str(uuid.uuid4()))
        key = self._job_key(job.job_id)

        await self._redis.hset(key, mapping={
            "job": job.model_dump_json(),
            "submission": submission.model_dump_json(),
        })
        await self._redis.lpush(self.queue_name, job.job_id)
        await self._redis.expire(key, self.result_ttl)

        logger.info(f"Enqueued job {job.job_id}")
        return job.job_id

    async def dequeue(self, timeout: int = 5) -> Optional[Tuple[IngestionJob, ArticleSubmission]]:
        """
        Blocking pop (BRPOP)

        Returns:
            (job, submission) or None on timeout
        """
        await self.connect()

        popped = await self._redis.brpop(self.queue_name, timeout=timeout)
        if not popped:
            return None

        job_id = popped[1]
        data = await self._redis.hgetall(self._job_key(job_id))
        if not data:
            logger.error(f"Job {job_id} not found")
            return None

        return (
            IngestionJob.model_validate_json(data["job"]),
            ArticleSubmission.model_validate_json(data["submission"]),
        )

    async def get_job(self, job_id: str) -> Optional[IngestionJob]:
        """Get job status."""
        await self.connect()

        job_data = await self._redis.hget(self._job_key(job_id), "job")
        if not job_data:
            return None

        return IngestionJob.model_validate_json(job_data)

    async def update_job(
        self,
        job_id: str,
        status: Optional[JobStatus] = None,
        attempts: Optional[int] = None,
        error: Optional[str] = None,
        result: Optional[Dict[str, Any]] = None,
    ) -> Optional[IngestionJob]:
        """Update job status."""
        job = await self.get_job(job_id)
        if not job:
            return None

        _apply_update(job, status, attempts, error, result)
        await self._redis.hset(self._job_key(job_id), "job", job.model_dump_json())

        logger.info(f"Updated job {job_id}: status={job.status.value}, attempts={job.attempts}")
        return job

    async def requeue(self, job_id: str) -> None:
        """Put a job back at the tail of the queue."""
        await self.connect()
        await self._redis.lpush(self.queue_name, job_id)

    async def queue_length(self) -> int:
        await self.connect()
        return await self._redis.llen(self.queue_name)


class InMemoryJobQueue(JobQueue):
    """In-memory job queue for development and tests."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self._jobs: Dict[str, Dict[str, Any]] = {}
        self._queue: asyncio.Queue = asyncio.Queue()

    async def connect(self):
        """No-op for in-memory queue."""
        pass

    async def disconnect(self):
        """No-op for in-memory queue."""
        pass

    async def enqueue(self, submission: ArticleSubmission) -> str:
        job = IngestionJob(job_id=str(uuid.uuid4()), article_id=str(uuid.uuid4()))
        self._jobs[job.job_id] = {"job": job, "submission": submission}
        self._queue.put_nowait(job.job_id)
        return job.job_id

    async def dequeue(self, timeout: int = 5) -> Optional[Tuple[IngestionJob, ArticleSubmission]]:
        if not self._queue.empty():
            job_id = self._queue.get_nowait()
        elif timeout <= 0:
            return None
        else:
            try:
                job_id = await asyncio.wait_for(self._queue.get(), timeout=timeout)
            except asyncio.TimeoutError:
                return None

        entry = self._jobs[job_id]
        return entry["job"].model_copy(), entry["submission"]

    async def get_job(self, job_id: str) -> Optional[IngestionJob]:
        entry = self._jobs.get(job_id)
        return entry["job"].model_copy() if entry else None

    async def update_job(
        self,
        job_id: str,
        status: Optional[JobStatus] = None,
        attempts: Optional[int] = None,
        error: Optional[str] = None,
        result: Optional[Dict[str, Any]] = None,
    ) -> Optional[IngestionJob]:
        entry = self._jobs.get(job_id)
        if not entry:
            return None

        _apply_update(entry["job"], status, attempts, error, result)
        return entry["job"].model_copy()

    async def requeue(self, job_id: str) -> None:
        self._queue.put_nowait(job_id)

    async def queue_length(self) -> int:
        return self._queue.qsize()


class IngestionWorker:
    """
    Pull jobs, run the pipeline for each article and retry transient
    failures with exponential backoff.
    """

    def __init__(
        self,
        queue: JobQueue,
        orchestrator,
        articles,
        max_attempts: Optional[int] = None,
        backoff_base: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Initialize ingestion worker

        Args:
            queue: JobQueue or InMemoryJobQueue
            orchestrator: PipelineOrchestrator
            articles: Article repository the submissions are staged in
            max_attempts: Attempts before a job fails for good
            backoff_base: Seconds before the first retry; doubles each attempt
            sleep: Awaitable sleep (replaced in tests)
        """
        self.queue = queue
        self.orchestrator = orchestrator
        self.articles = articles
        self.max_attempts = max_attempts or settings.job_max_attempts
        self.backoff_base = backoff_base if backoff_base is not None else settings.job_backoff_base
        self._sleep = sleep

    def backoff_delay(self, attempt: int) -> float:
        """Delay after the given (1-based) failed attempt"""
        return self.backoff_base * 2 ** (attempt - 1)

    async def run_once(self, timeout: int = 5) -> Optional[IngestionJob]:
        """
        Process one attempt of the next job

        Returns:
            Updated job, or None when the queue stayed empty
        """
        entry = await self.queue.dequeue(timeout=timeout)
        if entry is None:
            return None

        job, submission = entry
        attempt = job.attempts + 1
        await self.queue.update_job(job.job_id, status=JobStatus.PROCESSING, attempts=attempt)

        transient = False
        try:
            article = await self.articles.add(submission.to_article(job.article_id))
            result = await self.orchestrator.process_article(article)

            if result.succeeded:
                logger.info(f"Completed job {job.job_id} (article {article.id})")
                return await self.queue.update_job(
                    job.job_id, status=JobStatus.COMPLETED, result=result.to_dict()
                )

            error = "; ".join(result.errors)
            transient = any(e.startswith(TRANSIENT_ERROR_PREFIX) for e in result.errors)
        except (TransientError, ConnectionError, TimeoutError) as e:
            logger.error(f"Transient error processing job {job.job_id}: {e}")
            error = str(e)
            transient = True
        except Exception as e:
            logger.exception(f"Error processing job {job.job_id}: {e}")
            error = str(e)

        if transient and attempt < self.max_attempts:
            delay = self.backoff_delay(attempt)
            logger.warning(
                f"Job {job.job_id} attempt {attempt}/{self.max_attempts} failed, retrying in {delay}s"
            )
            updated = await self.queue.update_job(job.job_id, status=JobStatus.RETRYING, error=error)
            await self._sleep(delay)
            await self.queue.requeue(job.job_id)
            return updated

        logger.error(f"Job {job.job_id} failed after {attempt} attempt(s): {error}")
        return await self.queue.update_job(job.job_id, status=JobStatus.FAILED, error=error)

    async def run(self, stop_event: asyncio.Event, timeout: int = 1) -> None:
        """Process jobs until the stop event is set"""
        logger.info("Ingestion worker started")

        while not stop_event.is_set():
            try:
                await self.run_once(timeout=timeout)
            except Exception as e:
                logger.error(f"Worker error: {e}")
                await self._sleep(5)

        logger.info("Ingestion worker stopped")

    async def process_all(self, timeout: int = 0) -> List[IngestionJob]:
        """Drain the queue, retries included; used by batch runs and tests"""
        jobs = []
        while True:
            job = await self.run_once(timeout=timeout)
            if job is None:
                return jobs
            jobs.append(job)
