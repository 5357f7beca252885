"""
Run the ingestion worker: python -m src.mention_resolution.worker
"""
import asyncio
import logging
import signal
import sys

from config.logging_config import setup_logging
from config.settings import settings
from src.mention_resolution.core.contextual_reasoning import AutomatedReviewer, build_llm_client
from src.mention_resolution.core.deduplicator import MentionDeduplicator
from src.mention_resolution.core.graph_db import Neo4jGraphStore
from src.mention_resolution.core.graph_upserter import GraphUpserter
from src.mention_resolution.core.identity_matcher import IdentityMatcher, IdentityRegistry
from src.mention_resolution.core.ingestion_queue import IngestionWorker, JobQueue
from src.mention_resolution.core.orchestrator import PipelineOrchestrator
from src.mention_resolution.core.repositories import (
    ArticleRepository,
    MentionRepository,
    RedisReviewItemStore,
    RelationRepository,
)
from src.mention_resolution.core.review_queue import CurationWorkflow

logger = logging.getLogger(__name__)


async def main():
    """Run the ingestion worker."""
    setup_logging(settings.log_level, settings.log_format)

    registry = IdentityRegistry.from_json(settings.registry_path) if settings.registry_path else IdentityRegistry()
    if not len(registry):
        logger.warning("Identity registry is empty; no mention will match")

    job_queue = JobQueue()
    review_store = RedisReviewItemStore()
    graph_store = Neo4jGraphStore()

    try:
        await job_queue.connect()
        await review_store.connect()
        await graph_store.verify()
        await graph_store.ensure_constraints()
        logger.info(f"Connected to Redis at {settings.redis_url}")
    except Exception as e:
        logger.error(f"Failed to connect to backing services: {e}")
        sys.exit(1)

    articles = ArticleRepository()
    mentions = MentionRepository()
    curation = CurationWorkflow(
        store=review_store,
        matcher=IdentityMatcher(registry),
        deduplicator=MentionDeduplicator(),
        reviewer=AutomatedReviewer(build_llm_client()),
        mention_repository=mentions,
    )
    orchestrator = PipelineOrchestrator(
        articles=articles,
        mentions=mentions,
        relations=RelationRepository(),
        curation=curation,
        upserter=GraphUpserter(graph_store),
    )
    worker = IngestionWorker(job_queue, orchestrator, articles)

    # Handle shutdown signals
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()

    def signal_handler(signum):
        logger.info(f"Received signal {signum}, shutting down...")
        stop_event.set()

    for signum in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(signum, signal_handler, signum)

    try:
        await worker.run(stop_event)
        await curation.wait_for_reviews()
    finally:
        await job_queue.disconnect()
        await review_store.close()
        await graph_store.close()
        logger.info("Worker stopped")


if __name__ == "__main__":
    asyncio.run(main())
