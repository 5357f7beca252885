"""
Identity registry (Tier 1) and mention-to-identity matching
"""
import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Tuple, Union

from src.mention_resolution.core.entities import (
    Identity,
    IdentityMatch,
    IdentityType,
    MatchType,
    MentionType,
)
from src.mention_resolution.core.entity_normalizer import (
    SPANISH_NICKNAMES,
    expand_nicknames,
    normalize_for_matching,
)
from src.mention_resolution.core.exceptions import NotFoundError
from src.mention_resolution.core.string_matcher import token_sort_ratio
from config.settings import settings

logger = logging.getLogger(__name__)

_MENTION_TO_IDENTITY_TYPE = {
    MentionType.PERSON: IdentityType.PERSON,
    MentionType.ORG: IdentityType.ORGANIZATION,
}


class IdentityRegistry:
    """
    Immutable snapshot of verified identities
    """

    def __init__(self, identities: Iterable[Identity] = ()):
        self._identities: Tuple[Identity, ...] = tuple(identities)
        self._by_id: Dict[str, Identity] = {i.id: i for i in self._identities}

    @classmethod
    def from_records(cls, records: Iterable[Mapping[str, Any]]) -> "IdentityRegistry":
        """
        Build a registry from plain records

        Args:
            records: Dicts with id, canonical_name, aliases, entity_type,
                sanction_programs, source_authority

        Returns:
            IdentityRegistry
        """
        return cls(Identity.from_dict(dict(record)) for record in records)

    @classmethod
    def from_json(cls, path: Union[str, Path]) -> "IdentityRegistry":
        """Load a registry snapshot written by the sanctions importer"""
        with open(path, "r", encoding="utf-8") as f:
            records = json.load(f)

        registry = cls.from_records(records)
        logger.info(f"Loaded {len(registry)} identities from {path}")
        return registry

    def by_type(self, entity_type: IdentityType) -> List[Identity]:
        return [i for i in self._identities if i.entity_type == entity_type]

    def get(self, identity_id: str) -> Identity:
        """
        Get identity by id

        Raises:
            NotFoundError: If the id is not in the snapshot
        """
        identity = self._by_id.get(identity_id)
        if identity is None:
            raise NotFoundError("Identity", identity_id)
        return identity

    def __len__(self) -> int:
        return len(self._identities)

    def __iter__(self) -> Iterator[Identity]:
        return iter(self._identities)


class IdentityMatcher:
    """
    Match mention text against the identity registry.

    Exact canonical-name and alias hits short-circuit at 100; otherwise the
    best token-sort ratio over every name and alias is returned when it
    clears the fuzzy threshold.
    """

    def __init__(
        self,
        registry: Optional[IdentityRegistry] = None,
        fuzzy_threshold: Optional[int] = None,
        high_confidence_threshold: Optional[int] = None,
        nicknames: Mapping[str, Tuple[str, ...]] = SPANISH_NICKNAMES
    ):
        """
        Initialize identity matcher

        Args:
            registry: Registry snapshot to match against
            fuzzy_threshold: Minimum score returned (0-100)
            high_confidence_threshold: Score at which a match auto-approves
            nicknames: Given name -> nickname table used for variants
        """
        self._registry = registry or IdentityRegistry()
        self.fuzzy_threshold = fuzzy_threshold if fuzzy_threshold is not None else settings.fuzzy_match_threshold
        self.high_confidence_threshold = (
            high_confidence_threshold if high_confidence_threshold is not None
            else settings.high_confidence_threshold
        )
        self.nicknames = self._bidirectional(nicknames)

    @property
    def registry(self) -> IdentityRegistry:
        return self._registry

    def reload(self, registry: IdentityRegistry) -> None:
        """Swap in a new registry snapshot"""
        self._registry = registry
        logger.info(f"Identity registry reloaded ({len(registry)} identities)")

    def match(self, mention_text: str, entity_type: MentionType) -> Optional[IdentityMatch]:
        """
        Find the best registry identity for a mention

        Args:
            mention_text: Raw or normalized mention text
            entity_type: Mention type; LOCATION never matches

        Returns:
            IdentityMatch or None if nothing scores above the fuzzy threshold
        """
        identity_type = _MENTION_TO_IDENTITY_TYPE.get(MentionType(entity_type))
        normalized = normalize_for_matching(mention_text or "")
        if identity_type is None or not normalized:
            return None

        # Pin the snapshot for the whole call
        candidates = self._registry.by_type(identity_type)
        if not candidates:
            logger.warning(f"No registry identities for type {identity_type.value}")
            return None

        exact = self._exact_match(normalized, candidates)
        if exact:
            return exact

        best = self._fuzzy_match(normalized, candidates)
        if best and best.score >= self.fuzzy_threshold:
            logger.info(
                f"Match found: '{mention_text}' -> '{best.matched_on}' ({best.score}%)"
            )
            return best

        logger.debug(
            f"No match found for '{mention_text}' (best score: {best.score if best else 0})"
        )
        return None

    def _exact_match(self, normalized: str, candidates: List[Identity]) -> Optional[IdentityMatch]:
        for identity in candidates:
            if normalize_for_matching(identity.canonical_name) == normalized:
                return IdentityMatch(identity, 100, MatchType.EXACT, identity.canonical_name)

        for identity in candidates:
            for alias in sorted(identity.aliases):
                if normalize_for_matching(alias) == normalized:
                    return IdentityMatch(identity, 100, MatchType.ALIAS, alias)

        return None

    def _fuzzy_match(self, normalized: str, candidates: List[Identity]) -> Optional[IdentityMatch]:
        variants = expand_nicknames(normalized, self.nicknames)
        # Nickname-derived scores stay below auto-approval
        variant_cap = self.high_confidence_threshold - 1

        best: Optional[IdentityMatch] = None
        for identity in candidates:
            names = [identity.canonical_name] + sorted(identity.aliases)
            for name in names:
                target = normalize_for_matching(name)
                for index, variant in enumerate(variants):
                    score = token_sort_ratio(variant, target)
                    if index > 0:
                        score = min(score, variant_cap)
                    if best is None or score > best.score:
                        best = IdentityMatch(identity, score, MatchType.FUZZY, name)

        return best

    @staticmethod
    def _bidirectional(nicknames: Mapping[str, Tuple[str, ...]]) -> Dict[str, Tuple[str, ...]]:
        """Let nicknames map back to their given name too ("nico" -> "nicolas")"""
        table: Dict[str, List[str]] = {}
        for given, variants in nicknames.items():
            given = normalize_for_matching(given)
            for nickname in variants:
                nickname = normalize_for_matching(nickname)
                table.setdefault(given, []).append(nickname)
                table.setdefault(nickname, []).append(given)
        return {name: tuple(values) for name, values in table.items()}
