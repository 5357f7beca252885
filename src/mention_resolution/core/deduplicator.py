"""
Mention-to-mention duplicate detection, review flagging and merging
"""
import logging
import re
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from src.mention_resolution.core.entities import DuplicateCandidate, Mention, MentionType
from src.mention_resolution.core.entity_normalizer import (
    GEO_TERMS,
    SUSPICIOUS_PERSON_TOKENS,
    normalize_for_comparison,
)
from src.mention_resolution.core.string_matcher import (
    PhoneticMatcher,
    common_char_ratio,
    jaro_winkler_similarity,
)
from config.settings import settings

logger = logging.getLogger(__name__)

_ALL_CAPS = re.compile(r"^[A-Z]{2,}$")
_VOWELS = re.compile(r"[AEIOU]")


@dataclass
class ReviewFlags:
    """Result of the suspicious-mention checks"""
    should_review: bool = False
    issues: List[str] = field(default_factory=list)


class MentionDeduplicator:
    """
    Detect likely duplicate mentions with Jaro-Winkler similarity and flag
    extraction errors before they reach the graph
    """

    def __init__(
        self,
        stopwords: Iterable[str] = SUSPICIOUS_PERSON_TOKENS,
        geo_terms: Iterable[str] = GEO_TERMS,
        min_similarity: Optional[float] = None
    ):
        """
        Initialize deduplicator

        Args:
            stopwords: Normalized words that are never person names
            geo_terms: Normalized place names that are never person names
            min_similarity: Default duplicate threshold (0-1)
        """
        self.stopwords = frozenset(stopwords)
        self.geo_terms = frozenset(geo_terms)
        self.min_similarity = (
            min_similarity if min_similarity is not None else settings.duplicate_similarity_threshold
        )
        self.phonetic_matcher = PhoneticMatcher()

    def similarity(self, mention: Mention, other: Mention) -> float:
        """
        Highest Jaro-Winkler similarity between the two surface forms

        Args:
            mention: First mention
            other: Second mention

        Returns:
            Similarity (0-1)
        """
        raw_similarity = jaro_winkler_similarity(
            normalize_for_comparison(mention.raw_text),
            normalize_for_comparison(other.raw_text),
        )
        norm_similarity = jaro_winkler_similarity(mention.normalized_text, other.normalized_text)
        return max(raw_similarity, norm_similarity)

    def find_duplicates(
        self,
        mention: Mention,
        candidates: Iterable[Mention],
        min_similarity: Optional[float] = None
    ) -> List[DuplicateCandidate]:
        """
        Find existing mentions of the same type that look like the same entity

        Args:
            mention: Mention to check
            candidates: Previously stored mentions
            min_similarity: Threshold override

        Returns:
            Duplicate candidates, most similar first
        """
        threshold = self.min_similarity if min_similarity is None else min_similarity
        matches = []

        for candidate in candidates:
            if candidate.id == mention.id or candidate.type != mention.type:
                continue

            similarity = self.similarity(mention, candidate)
            if similarity >= threshold:
                matches.append(DuplicateCandidate(
                    mention_id=candidate.id,
                    similarity=round(similarity, 2),
                    reason=self.build_match_reason(mention, candidate, similarity),
                ))

        return sorted(matches, key=lambda m: m.similarity, reverse=True)

    def flag_for_review(self, mention: Mention) -> ReviewFlags:
        """
        Flag suspicious mentions (stopwords or places typed as PERSON,
        acronyms, noise) for manual review

        Args:
            mention: Mention to check

        Returns:
            ReviewFlags
        """
        issues = []

        if len(mention.raw_text.strip()) < 2:
            issues.append(f'Mention text too short: "{mention.raw_text}"')

        if mention.type == MentionType.PERSON:
            if mention.normalized_text in self.stopwords:
                issues.append(
                    f'Likely not a person name: "{mention.raw_text}" detected as PERSON (extraction error)'
                )

            if _ALL_CAPS.match(mention.raw_text) and not _VOWELS.search(mention.raw_text):
                issues.append(f'Possible acronym misclassified as person: "{mention.raw_text}"')

            if mention.normalized_text in self.geo_terms:
                issues.append(
                    f'Geographic term misclassified as PERSON: "{mention.raw_text}" (likely ORG/LOC)'
                )

        return ReviewFlags(should_review=bool(issues), issues=issues)

    def merge_entities(self, primary: Mention, duplicate: Mention) -> Mention:
        """
        Merge a duplicate into the primary mention, keeping the more complete
        surface form ("Juan Pérez" over "Juan")

        Args:
            primary: Mention that survives
            duplicate: Mention folded into it

        Returns:
            Rewritten primary mention
        """
        merged = primary
        if len(duplicate.raw_text) > len(primary.raw_text):
            merged = primary.with_text(duplicate.raw_text, duplicate.normalized_text)

        logger.info(
            f"Merged mentions: {duplicate.raw_text} ({duplicate.id}) -> {merged.raw_text} ({primary.id})"
        )
        return merged

    def build_match_reason(self, mention: Mention, other: Mention, similarity: float) -> str:
        """Human-readable explanation of why two mentions look alike"""
        percent = int(similarity * 100 + 0.5)
        length_diff = abs(len(mention.raw_text) - len(other.raw_text))
        overlap = common_char_ratio(mention.raw_text, other.raw_text)

        if mention.normalized_text == other.normalized_text:
            return f'{percent}% match: Same normalized name "{mention.normalized_text}"'

        if length_diff <= 3 and overlap > 0.7:
            return (
                f'{percent}% match: Likely truncated or variant spelling '
                f'("{mention.raw_text}" vs "{other.raw_text}")'
            )

        if self.phonetic_matcher.phonetic_match(mention.normalized_text, other.normalized_text):
            return f'{percent}% match: Phonetically identical ("{mention.raw_text}" vs "{other.raw_text}")'

        if overlap > 0.8:
            return f"{percent}% match: Significant character overlap ({int(overlap * 100 + 0.5)}%)"

        return f'{percent}% similar: "{mention.raw_text}" vs "{other.raw_text}"'
