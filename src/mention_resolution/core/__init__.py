"""
Core mention resolution components
"""
from src.mention_resolution.core.entities import (
    Article,
    Identity,
    IdentityMatch,
    Mention,
    MentionType,
    RelationMention,
    GraphNode,
    GraphEdge,
    ReviewQueueItem,
    ReviewStatus,
    PipelineResult,
)
from src.mention_resolution.core.entity_extractor import MentionExtractor
from src.mention_resolution.core.identity_matcher import IdentityMatcher, IdentityRegistry
from src.mention_resolution.core.deduplicator import MentionDeduplicator
from src.mention_resolution.core.confidence import ConfidenceScorer
from src.mention_resolution.core.contextual_reasoning import AutomatedReviewer
from src.mention_resolution.core.review_queue import CurationWorkflow
from src.mention_resolution.core.graph_db import InMemoryGraphStore, Neo4jGraphStore
from src.mention_resolution.core.graph_upserter import GraphUpserter
from src.mention_resolution.core.orchestrator import PipelineOrchestrator

__all__ = [
    "Article",
    "Identity",
    "IdentityMatch",
    "Mention",
    "MentionType",
    "RelationMention",
    "GraphNode",
    "GraphEdge",
    "ReviewQueueItem",
    "ReviewStatus",
    "PipelineResult",
    "MentionExtractor",
    "IdentityMatcher",
    "IdentityRegistry",
    "MentionDeduplicator",
    "ConfidenceScorer",
    "AutomatedReviewer",
    "CurationWorkflow",
    "InMemoryGraphStore",
    "Neo4jGraphStore",
    "GraphUpserter",
    "PipelineOrchestrator",
]
