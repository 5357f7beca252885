"""
Conflict-resolving node and edge upserts
"""
import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from src.mention_resolution.core.entities import EdgeType, GraphEdge, GraphNode, NodeType
from src.mention_resolution.core.entity_normalizer import normalize_mention_text

logger = logging.getLogger(__name__)


def sanitize_alt_names(names: Optional[Union[str, Iterable[str]]]) -> List[str]:
    """
    Trim alternate names and drop blanks and duplicates, keeping first-seen order

    Args:
        names: A single name or an iterable of names

    Returns:
        Clean list of names
    """
    if not names:
        return []
    if isinstance(names, str):
        names = [names]

    clean = []
    for name in names:
        name = str(name).strip()
        if name and name not in clean:
            clean.append(name)
    return clean


class GraphUpserter:
    """
    Create-or-merge nodes keyed by (type, canonical_name) and edges keyed by
    (src, dst, type)
    """

    def __init__(self, graph_store):
        """
        Initialize graph upserter

        Args:
            graph_store: InMemoryGraphStore or Neo4jGraphStore
        """
        self.graph_store = graph_store

    async def upsert_node(
        self,
        node_type: NodeType,
        canonical_name: str,
        alt_names: Optional[Iterable[str]] = None,
        source_ids: Optional[Dict[str, Any]] = None,
        identity_id: Optional[str] = None
    ) -> Tuple[GraphNode, bool]:
        """
        Upsert a node. Alternate names are unioned, source ids merged
        last-write-wins, and the identity link is only backfilled

        Args:
            node_type: PERSON or ORG
            canonical_name: Name; normalized before lookup
            alt_names: Additional surface forms
            source_ids: Provenance ids (article, mention)
            identity_id: Registry identity to link

        Returns:
            (node, created)

        Raises:
            ValueError: If the canonical name is blank
        """
        normalized = normalize_mention_text(canonical_name or "")
        if not normalized:
            raise ValueError("Canonical name must not be blank")

        node, created = await self.graph_store.merge_node(
            NodeType(node_type),
            normalized,
            sanitize_alt_names(alt_names),
            dict(source_ids or {}),
            identity_id,
        )

        if created:
            logger.info(f"Created {node.type.value} node {node.canonical_name} ({node.id})")
        else:
            logger.debug(f"Merged into {node.type.value} node {node.canonical_name} ({node.id})")
        return node, created

    async def upsert_edge(
        self,
        src_node_id: str,
        dst_node_id: str,
        edge_type: EdgeType,
        weight: Optional[float] = None,
        evidence_ref: Optional[Dict[str, Any]] = None
    ) -> Tuple[GraphEdge, bool]:
        """
        Upsert an edge; weight and evidence overwrite when provided

        Args:
            src_node_id: Source node id
            dst_node_id: Destination node id
            edge_type: Relationship type
            weight: Relation confidence (0-1)
            evidence_ref: Article id, relation id, sentence, pattern

        Returns:
            (edge, created)

        Raises:
            ValueError: If weight is outside [0, 1]
            NotFoundError: If an endpoint does not exist
        """
        if weight is not None and not 0.0 <= weight <= 1.0:
            raise ValueError(f"Edge weight must be within [0, 1], got {weight}")

        edge, created = await self.graph_store.merge_edge(
            src_node_id,
            dst_node_id,
            EdgeType(edge_type),
            weight,
            evidence_ref,
        )

        if created:
            logger.info(f"Created {edge.type.value} edge {src_node_id} -> {dst_node_id}")
        return edge, created
