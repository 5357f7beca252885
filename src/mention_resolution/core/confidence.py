"""
Five-tier confidence scoring for graph nodes and edges
"""
import logging
import math
from typing import Callable, Optional

from src.mention_resolution.core.entities import ConfidenceLevel, ConfidenceScore, GraphEdge, GraphNode
from src.mention_resolution.core.exceptions import NotFoundError
from config.settings import settings

logger = logging.getLogger(__name__)

SourceReliability = Callable[[GraphNode], int]


def round_half_up(value: float) -> int:
    """Round .5 away from zero (2.5 -> 3), unlike the built-in round"""
    return int(math.floor(value + 0.5))


def clamp_level(value: int) -> int:
    return min(max(value, ConfidenceLevel.RUMOR), ConfidenceLevel.OFFICIAL)


def default_source_reliability(node: GraphNode) -> int:
    """Every source is treated as reputable journalism until outlets are tiered"""
    return ConfidenceLevel.CREDIBLE


class ConfidenceScorer:
    """
    Weighted composite of source reliability, extraction quality, registry
    match quality and evidence strength
    """

    def __init__(
        self,
        graph_store=None,
        source_reliability: Optional[SourceReliability] = None,
        weight_source_reliability: Optional[float] = None,
        weight_extraction_quality: Optional[float] = None,
        weight_match_quality: Optional[float] = None,
        weight_evidence_strength: Optional[float] = None
    ):
        """
        Initialize confidence scorer

        Args:
            graph_store: Store used by the *_by_id variants
            source_reliability: Node -> level callable
            weight_*: Component weights (default to settings)
        """
        self.graph_store = graph_store
        self.source_reliability = source_reliability or default_source_reliability
        self.weights = {
            "source_reliability": self._pick(weight_source_reliability, settings.weight_source_reliability),
            "extraction_quality": self._pick(weight_extraction_quality, settings.weight_extraction_quality),
            "match_quality": self._pick(weight_match_quality, settings.weight_match_quality),
            "evidence_strength": self._pick(weight_evidence_strength, settings.weight_evidence_strength),
        }
        # Integer hundredths keep the half-up cut exact (2.5 stays 2.5)
        self._weight_hundredths = {
            name: round_half_up(weight * 100) for name, weight in self.weights.items()
        }

    @staticmethod
    def _pick(value: Optional[float], default: float) -> float:
        return default if value is None else value

    def score_node(self, node: GraphNode) -> ConfidenceScore:
        """
        Score a node

        Args:
            node: Graph node

        Returns:
            ConfidenceScore with overall level in [1, 5]
        """
        source = int(self.source_reliability(node))
        extraction = self.score_extraction_quality(node)
        match = self.score_match_quality(node)
        evidence = self.score_evidence_strength(node)

        weighted = (
            source * self._weight_hundredths["source_reliability"] +
            extraction * self._weight_hundredths["extraction_quality"] +
            match * self._weight_hundredths["match_quality"] +
            evidence * self._weight_hundredths["evidence_strength"]
        )

        return ConfidenceScore(
            overall=clamp_level((weighted + 50) // 100),
            source_reliability=source,
            extraction_quality=extraction,
            match_quality=match,
            evidence_strength=evidence,
            reasoning=self._node_reasoning(node, source, extraction, evidence),
        )

    def score_edge(self, edge: GraphEdge, src: GraphNode, dst: GraphNode) -> ConfidenceScore:
        """
        Score an edge; an edge is only as strong as its weakest endpoint

        Args:
            edge: Graph edge
            src: Source node
            dst: Destination node

        Returns:
            ConfidenceScore
        """
        src_score = self.score_node(src)
        dst_score = self.score_node(dst)

        node_confidence = min(src_score.overall, dst_score.overall)
        weight = 0.5 if edge.weight is None else edge.weight
        relation_confidence = math.ceil(weight * 5)

        overall = clamp_level(round_half_up((node_confidence + relation_confidence) / 2))

        return ConfidenceScore(
            overall=overall,
            source_reliability=src_score.source_reliability,
            extraction_quality=relation_confidence,
            match_quality=node_confidence,
            evidence_strength=min(src_score.evidence_strength, dst_score.evidence_strength),
            reasoning=(
                f"Relationship between {src.canonical_name} and {dst.canonical_name}; "
                f"weakest endpoint {ConfidenceLevel(node_confidence).name}, "
                f"with {round_half_up(weight * 100)}% extraction confidence"
            ),
        )

    async def score_node_by_id(self, node_id: str) -> ConfidenceScore:
        """
        Score a stored node

        Raises:
            NotFoundError: If the node does not exist
        """
        node = await self.graph_store.get_node(node_id)
        if node is None:
            raise NotFoundError("Node", node_id)
        return self.score_node(node)

    async def score_edge_by_id(self, edge_id: str) -> ConfidenceScore:
        """
        Score a stored edge

        Raises:
            NotFoundError: If the edge or one of its endpoints does not exist
        """
        edge = await self.graph_store.get_edge(edge_id)
        if edge is None:
            raise NotFoundError("Edge", edge_id)

        src = await self.graph_store.get_node(edge.src_node_id)
        dst = await self.graph_store.get_node(edge.dst_node_id)
        if src is None or dst is None:
            missing = edge.src_node_id if src is None else edge.dst_node_id
            raise NotFoundError("Node", missing)

        return self.score_edge(edge, src, dst)

    @staticmethod
    def score_extraction_quality(node: GraphNode) -> int:
        name = node.canonical_name
        if len(name) > 2 and name[0].isupper():
            return ConfidenceLevel.CREDIBLE
        return ConfidenceLevel.UNVERIFIED

    @staticmethod
    def score_match_quality(node: GraphNode) -> int:
        if node.linked_identity_id:
            return ConfidenceLevel.OFFICIAL
        return ConfidenceLevel.UNVERIFIED

    @staticmethod
    def score_evidence_strength(node: GraphNode) -> int:
        """Evidence grows with the number of surface forms seen"""
        mention_count = len(node.alt_names) + 1

        if mention_count >= 10:
            return ConfidenceLevel.OFFICIAL
        if mention_count >= 5:
            return ConfidenceLevel.VERIFIED
        if mention_count >= 3:
            return ConfidenceLevel.CREDIBLE
        if mention_count >= 2:
            return ConfidenceLevel.UNVERIFIED
        return ConfidenceLevel.RUMOR

    @staticmethod
    def _node_reasoning(node: GraphNode, source: int, extraction: int, evidence: int) -> str:
        parts = []

        if node.linked_identity_id:
            parts.append("Matched to verified registry identity")
        else:
            parts.append("No registry match")

        if source >= ConfidenceLevel.VERIFIED:
            parts.append("from official source")
        elif source >= ConfidenceLevel.CREDIBLE:
            parts.append("from reputable news source")
        else:
            parts.append("from unverified source")

        if extraction >= ConfidenceLevel.CREDIBLE:
            parts.append("well-formed name")
        else:
            parts.append("weak extraction")

        if evidence >= ConfidenceLevel.VERIFIED:
            parts.append("with strong evidence (multiple mentions)")
        elif evidence >= ConfidenceLevel.CREDIBLE:
            parts.append("with moderate evidence")
        else:
            parts.append("with limited evidence")

        return ", ".join(parts)
