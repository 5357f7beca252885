"""
Mention Resolution for an Accountability Graph

Extracts person and organization mentions from news text, resolves them
against a verified identity registry and gates what enters a
provenance-tracked relationship graph through a curation workflow.
"""

__version__ = "0.1.0"

from src.mention_resolution.core.entities import (
    Mention,
    MentionType,
    RelationMention,
    GraphNode,
    GraphEdge,
    ReviewStatus,
)

__all__ = [
    "Mention",
    "MentionType",
    "RelationMention",
    "GraphNode",
    "GraphEdge",
    "ReviewStatus",
]
