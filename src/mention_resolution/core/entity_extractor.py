"""
Pattern-based mention and relation extraction from article text
"""
import logging
import re
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Tuple, Union
from uuid import NAMESPACE_URL, uuid5

from src.mention_resolution.core.entities import Mention, MentionType, RelationMention, RelationPattern
from src.mention_resolution.core.entity_normalizer import (
    DETERMINERS,
    KNOWN_LOCATIONS,
    LEGAL_SUFFIXES,
    LOCATIVE_PREPOSITIONS,
    is_known_location,
    normalize_mention_text,
)

logger = logging.getLogger(__name__)

_ID_NAMESPACE = uuid5(NAMESPACE_URL, "mention-resolution/extractor")

CAPITALIZED_CONFIDENCE = 0.65
ORG_SUFFIX_CONFIDENCE = 0.8
LOCATION_CONFIDENCE = 0.7
RELATION_ROLE_CONFIDENCE = 0.75

_UPPER = "A-ZÁÉÍÓÚÑÜ"
_LOWER = "a-záéíóúñü"
_TOKEN = rf"[{_UPPER}](?:[{_LOWER}]+|[{_UPPER}]+)(?:-[{_UPPER}][{_LOWER}]+)?"
_NAME = rf"(?<!\w){_TOKEN}(?:[ \t]+{_TOKEN})*(?!\w)"
_SUFFIX = "|".join(re.escape(s) for s in LEGAL_SUFFIXES)
_ORG_NAME = rf"(?<!\w){_TOKEN}(?:[ \t]+(?:(?:de|del|y|&)[ \t]+)?{_TOKEN})*,?[ \t]+(?:{_SUFFIX})(?!\w)"

_WS = r"[ \t]+"
_COPULA = r"(?i:sigue siendo|ha sido|has been|sería|seria|es|era|fue|son|eran|fueron|is|was|are|were)"
_ARTICLE = r"(?:(?i:el|la|los|las|un|una|the|an|a)[ \t]+)?"
_QUALIFIER = r"(?:(?i:presuntos?|presuntas?|supuestos?|supuestas?|alleged|reputed|known)[ \t]+)?"
_OF = r"(?i:del|de la|de|of|for)"
_OBJECT_NOUN = r"(?:(?i:empresa|compañía|compania|sociedad|firma|company|firm)[ \t]+)?"
_OBJECT = rf"(?P<obj>{_TOKEN}(?:[ \t]+(?:(?:de|del|y|&)[ \t]+)?{_TOKEN})*(?:,?[ \t]+(?:{_SUFFIX}))?)(?!\w)"

_FRONT_MAN = r"(?i:testaferros?|front[- ]?m[ae]n|straw[- ]?m[ae]n|nominees?)"
_OFFICER = (
    r"(?i:representante legal|directora|director|directivo|oficial|tesorera|tesorero|"
    r"secretaria|secretario|administradora|administrador|presidenta|presidente|gerente|"
    r"officer|treasurer|secretary|president|manager|chairman|ceo)"
)
_OWNER = (
    r"(?i:beneficiari[oa]s? finales?|propietari[oa]s?|dueñ[oa]s?|accionistas?|socio|socia|"
    r"ultimate beneficial owners?|beneficial owners?|owners?|shareholders?)"
)


def _template(role: str) -> "re.Pattern":
    return re.compile(
        rf"(?P<subj>{_NAME}){_WS}{_COPULA}{_WS}{_ARTICLE}{_QUALIFIER}{role}{_WS}{_OF}{_WS}{_ARTICLE}{_OBJECT_NOUN}{_OBJECT}"
    )


@dataclass(frozen=True)
class RelationRule:
    """Fixed verb-phrase template with its confidence and endpoint types"""
    pattern: RelationPattern
    regex: "re.Pattern"
    confidence: float
    subject_type: Optional[MentionType]
    object_type: Optional[MentionType]


RELATION_RULES: Tuple[RelationRule, ...] = (
    RelationRule(RelationPattern.FRONT_MAN_OF, _template(_FRONT_MAN), 0.85,
                 MentionType.PERSON, MentionType.PERSON),
    RelationRule(RelationPattern.OFFICER_OF, _template(_OFFICER), 0.8,
                 MentionType.PERSON, MentionType.ORG),
    RelationRule(RelationPattern.BENEFICIAL_OWNER_OF, _template(_OWNER), 0.8,
                 MentionType.PERSON, MentionType.ORG),
)

CO_MENTION_RULE = RelationRule(
    RelationPattern.CO_MENTIONED,
    re.compile(rf"(?P<subj>{_NAME}){_WS}(?:y|e|and){_WS}(?P<obj>{_NAME})"),
    0.6,
    None,
    None,
)

_NAME_RE = re.compile(_NAME)
_ORG_RE = re.compile(_ORG_NAME)
_LOCATION_RE = re.compile(
    rf"(?<!\w)(?i:{'|'.join(LOCATIVE_PREPOSITIONS)}){_WS}(?P<place>{_NAME})"
)
_SENTENCE_BOUNDARY = re.compile(rf"(?<=[.!?])\s+(?=[¿¡\"“«]?[{_UPPER}])")
_NO_BREAK_AFTER = re.compile(
    r"(?:\b(?:S\.A|C\.A|S\.R\.L|S\.A\.S|Inc|Corp|Ltd|Sr|Sra|Dr|Dra|Lic|Mr|Mrs|Ms)\.|\b[A-Z]\.)$"
)

Extracted = Union[Mention, RelationMention]


@dataclass(frozen=True)
class _Span:
    start: int
    end: int
    text: str
    type: MentionType
    confidence: float
    rule: str

    def overlaps(self, other: "_Span") -> bool:
        return self.start < other.end and other.start < self.end


def split_sentences(text: str) -> List[Tuple[int, str]]:
    """
    Split text into sentences, keeping each sentence's start offset.
    Legal-entity abbreviations (S.A., Inc.) and titles (Sr., Dr.) do not end
    a sentence.
    """
    sentences = []
    start = 0
    for boundary in _SENTENCE_BOUNDARY.finditer(text):
        if _NO_BREAK_AFTER.search(text[start:boundary.start()]):
            continue
        chunk = text[start:boundary.start()]
        if chunk.strip():
            sentences.append((start, chunk))
        start = boundary.end()

    tail = text[start:]
    if tail.strip():
        sentences.append((start, tail))
    return sentences


def _trim_determiners(text: str, start: int) -> Tuple[str, int]:
    """Drop leading determiners ("La Fiscalía" -> "Fiscalía")"""
    tokens = text.split()
    offset = start
    while tokens and normalize_mention_text(tokens[0]) in DETERMINERS:
        skipped = text.index(tokens[0]) + len(tokens[0])
        rest = text[skipped:]
        stripped = rest.lstrip()
        offset += skipped + (len(rest) - len(stripped))
        text = stripped
        tokens = text.split()
    return text, offset


class Extraction:
    """
    Lazy, restartable sequence of mentions and relations for one article.

    Every iteration re-scans the text from the beginning; nothing is cached
    and nothing outside the object is touched.
    """

    def __init__(
        self,
        extractor: "MentionExtractor",
        text: str,
        language: str,
        article_id: str
    ):
        self._extractor = extractor
        self.text = text if isinstance(text, str) else ""
        self.language = language
        self.article_id = article_id

    def __iter__(self) -> Iterator[Extracted]:
        return self._extractor._scan(self.text, self.language, self.article_id)

    def mentions(self) -> List[Mention]:
        """All mentions, in text order"""
        return [item for item in self if isinstance(item, Mention)]

    def relations(self) -> List[RelationMention]:
        """All relation candidates, in text order"""
        return [item for item in self if isinstance(item, RelationMention)]


class MentionExtractor:
    """
    Extract candidate mentions and relation phrases using ordered pattern
    rules. Precision is intentionally low; downstream scoring and curation
    compensate.
    """

    def __init__(
        self,
        known_locations=KNOWN_LOCATIONS,
        relation_rules: Tuple[RelationRule, ...] = RELATION_RULES,
        co_mention_rule: RelationRule = CO_MENTION_RULE
    ):
        """
        Initialize mention extractor

        Args:
            known_locations: Normalized place names accepted by the locative rule
            relation_rules: Verb-phrase templates, highest priority first
            co_mention_rule: Fallback conjunction rule
        """
        self.known_locations = frozenset(known_locations)
        self.relation_rules = relation_rules
        self.co_mention_rule = co_mention_rule

    def extract(self, text: str, language: str = "es", article_id: str = "") -> Extraction:
        """
        Extract mentions and relations from article text

        Args:
            text: Raw article text
            language: Language tag stored on each mention
            article_id: Provenance id of the article

        Returns:
            Extraction (iterable of Mention and RelationMention)
        """
        return Extraction(self, text, language, article_id)

    def _scan(self, text: str, language: str, article_id: str) -> Iterator[Extracted]:
        if not text or not text.strip():
            return

        sentences = split_sentences(text)
        role_types = self._collect_role_types(sentences)

        seen_text = set()
        mention_ids: Dict[str, str] = {}

        for sentence_start, sentence in sentences:
            try:
                spans = self._sentence_spans(sentence, role_types)
                relations = self._sentence_relations(sentence)
            except Exception as e:
                logger.exception(f"Extraction failed for sentence at offset {sentence_start}: {e}")
                continue

            for span in spans:
                key = span.text.casefold()
                if key in seen_text:
                    continue
                seen_text.add(key)

                mention = self._build_mention(text, sentence_start, span, language, article_id)
                mention_ids.setdefault(mention.normalized_text, mention.id)
                yield mention

            for rule, match in relations:
                yield self._build_relation(
                    rule, match, sentence, sentence_start, article_id, mention_ids
                )

    def _collect_role_types(self, sentences: List[Tuple[int, str]]) -> Dict[str, Tuple[MentionType, float]]:
        """
        Type spans by the role they play in a relation template anywhere in
        the article ("X es testaferro de Y" makes X and Y persons)
        """
        role_types: Dict[str, Tuple[MentionType, float]] = {}
        for _, sentence in sentences:
            for rule in self.relation_rules:
                for match in rule.regex.finditer(sentence):
                    for group, mention_type in (("subj", rule.subject_type), ("obj", rule.object_type)):
                        if mention_type is None:
                            continue
                        span_text, _ = _trim_determiners(match.group(group), match.start(group))
                        if span_text:
                            role_types.setdefault(
                                normalize_mention_text(span_text),
                                (mention_type, RELATION_ROLE_CONFIDENCE),
                            )
        return role_types

    def _sentence_spans(
        self,
        sentence: str,
        role_types: Dict[str, Tuple[MentionType, float]]
    ) -> List[_Span]:
        """Apply rules (b), (c), then (a), letting earlier rules claim their spans"""
        claimed: List[_Span] = []

        # Rule (b): organization suffix
        for match in _ORG_RE.finditer(sentence):
            text, start = _trim_determiners(match.group(0), match.start())
            if text:
                claimed.append(_Span(start, match.end(), text, MentionType.ORG,
                                     ORG_SUFFIX_CONFIDENCE, "org-suffix"))

        # Rule (c): locative preposition + known place
        for match in _LOCATION_RE.finditer(sentence):
            place = self._known_place_prefix(match.group("place"))
            if not place:
                continue
            span = _Span(match.start("place"), match.start("place") + len(place), place,
                         MentionType.LOCATION, LOCATION_CONFIDENCE, "locative")
            if not any(span.overlaps(other) for other in claimed):
                claimed.append(span)

        spans = list(claimed)

        # Rule (a): capitalized token sequences
        for match in _NAME_RE.finditer(sentence):
            text, start = _trim_determiners(match.group(0), match.start())
            span_end = start + len(text)

            # "en Caracas Juan Pérez": keep what follows a claimed prefix
            for other in claimed:
                if other.start <= start < other.end < span_end:
                    rest = sentence[other.end:span_end]
                    start = other.end + len(rest) - len(rest.lstrip())
                    text = sentence[start:span_end]

            if len(text) < 3:
                continue

            candidate = _Span(start, span_end, text, MentionType.PERSON, CAPITALIZED_CONFIDENCE, "capitalization")
            if any(candidate.overlaps(other) for other in claimed):
                continue

            role = role_types.get(normalize_mention_text(text))
            if role:
                mention_type, confidence = role
                spans.append(_Span(start, span_end, text, mention_type, confidence, "relation-role"))
            else:
                mention_type = MentionType.PERSON if len(text.split()) == 1 else MentionType.ORG
                spans.append(_Span(start, span_end, text, mention_type, CAPITALIZED_CONFIDENCE, "capitalization"))

        return sorted(spans, key=lambda s: s.start)

    def _sentence_relations(self, sentence: str) -> List[Tuple[RelationRule, "re.Match"]]:
        """Match relation templates; co-mention fires only when nothing else did"""
        found = []
        for rule in self.relation_rules:
            for match in rule.regex.finditer(sentence):
                found.append((rule, match))

        if not found:
            match = self.co_mention_rule.regex.search(sentence)
            if match:
                found.append((self.co_mention_rule, match))

        return found

    def _known_place_prefix(self, phrase: str) -> Optional[str]:
        """Longest leading token run of the phrase that is a known place"""
        tokens = phrase.split()
        for size in range(len(tokens), 0, -1):
            candidate = " ".join(tokens[:size])
            if is_known_location(candidate, self.known_locations):
                return candidate
        return None

    def _build_mention(
        self,
        text: str,
        sentence_start: int,
        span: _Span,
        language: str,
        article_id: str
    ) -> Mention:
        start = sentence_start + span.start
        end = start + len(span.text)
        normalized = normalize_mention_text(span.text)

        return Mention(
            id=str(uuid5(_ID_NAMESPACE, f"{article_id}|{start}|{span.type.value}|{normalized}")),
            source_article_id=article_id,
            type=span.type,
            raw_text=span.text,
            normalized_text=normalized,
            language=language,
            extraction_confidence=span.confidence,
            byte_offsets={
                "start": len(text[:start].encode("utf-8")),
                "end": len(text[:end].encode("utf-8")),
            },
            rule=span.rule,
        )

    def _build_relation(
        self,
        rule: RelationRule,
        match: "re.Match",
        sentence: str,
        sentence_start: int,
        article_id: str,
        mention_ids: Dict[str, str]
    ) -> RelationMention:
        subject_text, _ = _trim_determiners(match.group("subj").strip(), match.start("subj"))
        object_text, _ = _trim_determiners(match.group("obj").strip(), match.start("obj"))
        subject_norm = normalize_mention_text(subject_text)
        object_norm = normalize_mention_text(object_text)

        return RelationMention(
            id=str(uuid5(
                _ID_NAMESPACE,
                f"{article_id}|rel|{sentence_start + match.start()}|{rule.pattern.value}|{subject_norm}|{object_norm}",
            )),
            source_article_id=article_id,
            pattern=rule.pattern,
            sentence_text=sentence.strip(),
            subject_text=subject_text or None,
            object_text=object_text or None,
            subject_mention_id=mention_ids.get(subject_norm),
            object_mention_id=mention_ids.get(object_norm),
            confidence=rule.confidence,
        )
