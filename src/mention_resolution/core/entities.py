"""
Core data models for mention resolution
"""
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum, IntEnum
from typing import Any, Dict, List, Optional, Tuple
from uuid import uuid4


class MentionType(str, Enum):
    """Mention type enumeration"""
    PERSON = "PERSON"
    ORG = "ORG"
    LOCATION = "LOCATION"


class IdentityType(str, Enum):
    """Registry identity type enumeration"""
    PERSON = "PERSON"
    ORGANIZATION = "ORGANIZATION"


class NodeType(str, Enum):
    """Graph node type enumeration"""
    PERSON = "PERSON"
    ORG = "ORG"


class EdgeType(str, Enum):
    """Graph edge type enumeration"""
    FRONT_MAN_OF = "FRONT_MAN_OF"
    OFFICER_OF = "OFFICER_OF"
    BENEFICIAL_OWNER_OF = "BENEFICIAL_OWNER_OF"
    CO_MENTIONED = "CO_MENTIONED"
    RELATION_PATTERN = "RELATION_PATTERN"


class RelationPattern(str, Enum):
    """Relation templates recognized by the extractor"""
    FRONT_MAN_OF = "front-man-of"
    OFFICER_OF = "officer-of"
    BENEFICIAL_OWNER_OF = "beneficial-owner-of"
    CO_MENTIONED = "co-mentioned"

    @property
    def edge_type(self) -> EdgeType:
        return _PATTERN_EDGE_TYPES.get(self, EdgeType.RELATION_PATTERN)


_PATTERN_EDGE_TYPES = {
    RelationPattern.FRONT_MAN_OF: EdgeType.FRONT_MAN_OF,
    RelationPattern.OFFICER_OF: EdgeType.OFFICER_OF,
    RelationPattern.BENEFICIAL_OWNER_OF: EdgeType.BENEFICIAL_OWNER_OF,
    RelationPattern.CO_MENTIONED: EdgeType.CO_MENTIONED,
}


class MatchType(str, Enum):
    """How a mention matched a registry identity"""
    EXACT = "EXACT"
    ALIAS = "ALIAS"
    FUZZY = "FUZZY"


class ReviewStatus(str, Enum):
    """Curation workflow states"""
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    MERGED = "MERGED"
    AUTO_APPROVED = "AUTO_APPROVED"

    @property
    def is_terminal(self) -> bool:
        return self is not ReviewStatus.PENDING

    @property
    def is_approving(self) -> bool:
        return self in (ReviewStatus.APPROVED, ReviewStatus.AUTO_APPROVED, ReviewStatus.MERGED)


class ConfidenceLevel(IntEnum):
    """Five-tier confidence scale"""
    RUMOR = 1        # single unverified source
    UNVERIFIED = 2   # weak evidence
    CREDIBLE = 3     # reputable journalism
    VERIFIED = 4     # multiple reputable sources
    OFFICIAL = 5     # OFAC, DOJ, ICC, court documents


def _datetime_or_none(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


@dataclass(frozen=True)
class Mention:
    """
    Candidate entity occurrence extracted from an article
    """
    id: str
    source_article_id: str
    type: MentionType
    raw_text: str
    normalized_text: str
    language: str = "es"
    extraction_confidence: float = 0.65
    byte_offsets: Dict[str, int] = field(default_factory=dict)
    rule: str = ""

    def with_text(self, raw_text: str, normalized_text: str) -> "Mention":
        """Return a copy carrying a different surface form"""
        return replace(self, raw_text=raw_text, normalized_text=normalized_text)

    def to_dict(self) -> Dict[str, Any]:
        """Convert mention to dictionary"""
        return {
            "id": self.id,
            "source_article_id": self.source_article_id,
            "type": self.type.value,
            "raw_text": self.raw_text,
            "normalized_text": self.normalized_text,
            "language": self.language,
            "extraction_confidence": self.extraction_confidence,
            "byte_offsets": dict(self.byte_offsets),
            "rule": self.rule,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Mention":
        """Create mention from dictionary"""
        data = dict(data)
        data["type"] = MentionType(data["type"])
        return cls(**data)


@dataclass(frozen=True)
class RelationMention:
    """
    Relation phrase between two mentions found in one sentence
    """
    id: str
    source_article_id: str
    pattern: RelationPattern
    sentence_text: str
    subject_text: Optional[str] = None
    object_text: Optional[str] = None
    subject_mention_id: Optional[str] = None
    object_mention_id: Optional[str] = None
    confidence: float = 0.6

    @property
    def is_resolved(self) -> bool:
        return bool(self.subject_mention_id and self.object_mention_id)


@dataclass(frozen=True)
class Identity:
    """
    Verified registry entry (Tier 1)
    """
    id: str
    canonical_name: str
    entity_type: IdentityType = IdentityType.PERSON
    aliases: frozenset = field(default_factory=frozenset)
    sanction_programs: frozenset = field(default_factory=frozenset)
    source_authority: str = ""
    verified: bool = True
    external_id: Optional[str] = None
    notes: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Identity":
        """Create identity from a registry record"""
        return cls(
            id=str(data.get("id") or uuid4()),
            canonical_name=data["canonical_name"],
            entity_type=IdentityType(data.get("entity_type", "PERSON")),
            aliases=frozenset(a for a in data.get("aliases", []) if a),
            sanction_programs=frozenset(data.get("sanction_programs", [])),
            source_authority=data.get("source_authority", ""),
            external_id=data.get("external_id"),
            notes=data.get("notes"),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert identity to dictionary"""
        return {
            "id": self.id,
            "canonical_name": self.canonical_name,
            "entity_type": self.entity_type.value,
            "aliases": sorted(self.aliases),
            "sanction_programs": sorted(self.sanction_programs),
            "source_authority": self.source_authority,
            "verified": self.verified,
            "external_id": self.external_id,
            "notes": self.notes,
        }


@dataclass(frozen=True)
class IdentityMatch:
    """Best registry match for a mention"""
    identity: Identity
    score: int
    match_type: MatchType
    matched_on: str

    @property
    def identity_id(self) -> str:
        return self.identity.id

    @property
    def is_high_confidence(self) -> bool:
        return self.score >= 95

    @property
    def confidence_level(self) -> ConfidenceLevel:
        if self.score >= 95:
            return ConfidenceLevel.OFFICIAL
        if self.score >= 85:
            return ConfidenceLevel.VERIFIED
        if self.score >= 75:
            return ConfidenceLevel.CREDIBLE
        if self.score >= 65:
            return ConfidenceLevel.UNVERIFIED
        return ConfidenceLevel.RUMOR

    def to_dict(self) -> Dict[str, Any]:
        return {
            "identity": self.identity.to_dict(),
            "score": self.score,
            "match_type": self.match_type.value,
            "matched_on": self.matched_on,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "IdentityMatch":
        return cls(
            identity=Identity.from_dict(data["identity"]),
            score=int(data["score"]),
            match_type=MatchType(data["match_type"]),
            matched_on=data["matched_on"],
        )


@dataclass(frozen=True)
class DuplicateCandidate:
    """Another mention that is likely the same entity"""
    mention_id: str
    similarity: float
    reason: str = ""


@dataclass
class GraphNode:
    """
    Canonical graph node, unique per (type, canonical_name)
    """
    id: str = field(default_factory=lambda: str(uuid4()))
    type: NodeType = NodeType.PERSON
    canonical_name: str = ""
    alt_names: List[str] = field(default_factory=list)
    source_ids: Dict[str, Any] = field(default_factory=dict)
    linked_identity_id: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.now)
    last_updated: datetime = field(default_factory=datetime.now)

    @property
    def key(self) -> Tuple[str, str]:
        return (self.type.value, self.canonical_name)

    def to_dict(self) -> Dict[str, Any]:
        """Convert node to dictionary"""
        return {
            "id": self.id,
            "type": self.type.value,
            "canonical_name": self.canonical_name,
            "alt_names": list(self.alt_names),
            "source_ids": dict(self.source_ids),
            "linked_identity_id": self.linked_identity_id,
            "created_at": self.created_at.isoformat(),
            "last_updated": self.last_updated.isoformat(),
        }


@dataclass
class GraphEdge:
    """
    Typed relationship between two nodes, unique per (src, dst, type)
    """
    src_node_id: str
    dst_node_id: str
    type: EdgeType = EdgeType.RELATION_PATTERN
    id: str = field(default_factory=lambda: str(uuid4()))
    weight: Optional[float] = None
    evidence_ref: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=datetime.now)
    last_updated: datetime = field(default_factory=datetime.now)

    @property
    def key(self) -> Tuple[str, str, str]:
        return (self.src_node_id, self.dst_node_id, self.type.value)

    def to_dict(self) -> Dict[str, Any]:
        """Convert edge to dictionary"""
        return {
            "id": self.id,
            "src_node_id": self.src_node_id,
            "dst_node_id": self.dst_node_id,
            "type": self.type.value,
            "weight": self.weight,
            "evidence_ref": dict(self.evidence_ref),
            "created_at": self.created_at.isoformat(),
            "last_updated": self.last_updated.isoformat(),
        }


@dataclass(frozen=True)
class ReviewerRecommendation:
    """Outcome of an automated reviewer call"""
    recommendation: str = "flag"  # approve, flag, investigate
    confidence: float = 0.0
    explanation: str = ""
    suggested_category: Optional[str] = None
    concerns: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "recommendation": self.recommendation,
            "confidence": self.confidence,
            "explanation": self.explanation,
            "suggested_category": self.suggested_category,
            "concerns": list(self.concerns),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ReviewerRecommendation":
        data = dict(data)
        data["concerns"] = tuple(data.get("concerns") or ())
        return cls(**data)


@dataclass
class ReviewQueueItem:
    """
    Curation state for one mention
    """
    mention_id: str
    mention: Mention
    status: ReviewStatus = ReviewStatus.PENDING
    issues: List[str] = field(default_factory=list)
    duplicate_candidates: List[Tuple[str, float]] = field(default_factory=list)
    identity_match: Optional[IdentityMatch] = None
    reviewer_recommendation: Optional[ReviewerRecommendation] = None
    merged_into: Optional[str] = None
    decided_by: Optional[str] = None
    decided_at: Optional[datetime] = None
    notes: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        """Convert queue item to dictionary"""
        return {
            "mention_id": self.mention_id,
            "mention": self.mention.to_dict(),
            "status": self.status.value,
            "issues": list(self.issues),
            "duplicate_candidates": [list(d) for d in self.duplicate_candidates],
            "identity_match": self.identity_match.to_dict() if self.identity_match else None,
            "reviewer_recommendation": (
                self.reviewer_recommendation.to_dict() if self.reviewer_recommendation else None
            ),
            "merged_into": self.merged_into,
            "decided_by": self.decided_by,
            "decided_at": self.decided_at.isoformat() if self.decided_at else None,
            "notes": self.notes,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ReviewQueueItem":
        """Create queue item from dictionary"""
        return cls(
            mention_id=data["mention_id"],
            mention=Mention.from_dict(data["mention"]),
            status=ReviewStatus(data["status"]),
            issues=list(data.get("issues", [])),
            duplicate_candidates=[(d[0], float(d[1])) for d in data.get("duplicate_candidates", [])],
            identity_match=(
                IdentityMatch.from_dict(data["identity_match"]) if data.get("identity_match") else None
            ),
            reviewer_recommendation=(
                ReviewerRecommendation.from_dict(data["reviewer_recommendation"])
                if data.get("reviewer_recommendation") else None
            ),
            merged_into=data.get("merged_into"),
            decided_by=data.get("decided_by"),
            decided_at=_datetime_or_none(data.get("decided_at")),
            notes=data.get("notes"),
            created_at=_datetime_or_none(data.get("created_at")) or datetime.now(),
            updated_at=_datetime_or_none(data.get("updated_at")) or datetime.now(),
        )


@dataclass
class ConfidenceScore:
    """1-5 composite confidence for a node or edge"""
    overall: int
    source_reliability: int
    extraction_quality: int
    match_quality: int
    evidence_strength: int
    reasoning: str = ""

    @property
    def components(self) -> Dict[str, int]:
        return {
            "source_reliability": self.source_reliability,
            "extraction_quality": self.extraction_quality,
            "match_quality": self.match_quality,
            "evidence_strength": self.evidence_strength,
        }


@dataclass
class Article:
    """Article handed over by the acquisition layer"""
    id: str = field(default_factory=lambda: str(uuid4()))
    raw_text: str = ""
    language: str = "es"
    outlet: str = ""
    title: str = ""
    url: str = ""
    published_at: Optional[datetime] = None
    processed: bool = False
    created_at: datetime = field(default_factory=datetime.now)


@dataclass
class PipelineResult:
    """Per-article outcome of a pipeline run"""
    article_id: str
    mention_count: int = 0
    relation_count: int = 0
    nodes_created: int = 0
    edges_created: int = 0
    identity_match_id: Optional[str] = None
    queued_for_review: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return not self.errors

    def to_dict(self) -> Dict[str, Any]:
        return {
            "article_id": self.article_id,
            "mention_count": self.mention_count,
            "relation_count": self.relation_count,
            "nodes_created": self.nodes_created,
            "edges_created": self.edges_created,
            "identity_match_id": self.identity_match_id,
            "queued_for_review": self.queued_for_review,
            "errors": list(self.errors),
        }
