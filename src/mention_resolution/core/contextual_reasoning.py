"""
Automated (LLM) reviewer for pending mentions
"""
import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Any, Optional

from anthropic import AsyncAnthropic

from src.mention_resolution.core.entities import ConfidenceLevel, Mention, ReviewerRecommendation
from config.settings import settings

logger = logging.getLogger(__name__)

RECOMMENDATIONS = ("approve", "flag", "investigate")

_RECOMMENDATION = re.compile(r"RECOMMENDATION:\s*(APPROVE|FLAG|INVESTIGATE)", re.IGNORECASE)
_CONFIDENCE = re.compile(r"CONFIDENCE:\s*([\d.]+)", re.IGNORECASE)
_EXPLANATION = re.compile(r"EXPLANATION:\s*(.+?)(?:CATEGORY:|ISSUES:|$)", re.IGNORECASE | re.DOTALL)
_CATEGORY = re.compile(r"CATEGORY:\s*(PERSON|ORG|LOCATION|ASSET)", re.IGNORECASE)
_ISSUES = re.compile(r"ISSUES:\s*(.+?)(?:\n|$)", re.IGNORECASE)


@dataclass(frozen=True)
class ReviewRequest:
    """What the reviewer is told about a mention"""
    mention_text: str
    normalized_text: str
    entity_type: str
    current_confidence: int = ConfidenceLevel.CREDIBLE
    context_snippet: str = ""
    language: str = "es"

    @classmethod
    def from_mention(
        cls,
        mention: Mention,
        context_snippet: str = "",
        current_confidence: int = ConfidenceLevel.CREDIBLE
    ) -> "ReviewRequest":
        return cls(
            mention_text=mention.raw_text,
            normalized_text=mention.normalized_text,
            entity_type=mention.type.value,
            current_confidence=current_confidence,
            context_snippet=context_snippet,
            language=mention.language,
        )


def build_llm_client() -> Optional[AsyncAnthropic]:
    """Anthropic client from settings, or None when review is disabled"""
    if not settings.enable_llm_review or not settings.anthropic_api_key:
        logger.warning("Automated reviewer disabled: ANTHROPIC_API_KEY not configured")
        return None
    return AsyncAnthropic(api_key=settings.anthropic_api_key)


def confidence_label(score: int) -> str:
    """Map a 1-5 level to a human-readable label"""
    if score <= ConfidenceLevel.RUMOR:
        return "RUMOR (unverified claim)"
    if score <= ConfidenceLevel.UNVERIFIED:
        return "UNVERIFIED (weak evidence)"
    if score <= ConfidenceLevel.CREDIBLE:
        return "CREDIBLE (moderate evidence)"
    if score <= ConfidenceLevel.VERIFIED:
        return "VERIFIED (strong evidence)"
    return "OFFICIAL (government/court document)"


class AutomatedReviewer:
    """
    LLM-based second-tier reviewer. Its output is advisory; failures always
    degrade to "flag" so a human looks at the mention.
    """

    def __init__(
        self,
        llm_client: Optional[Any] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None
    ):
        """
        Initialize automated reviewer

        Args:
            llm_client: LLM client (Anthropic async client); None disables review
            model: Model name (defaults to settings)
            timeout: Per-call timeout in seconds
        """
        self.llm_client = llm_client
        self.model = model or settings.default_llm_model
        self.timeout = timeout if timeout is not None else settings.llm_timeout_seconds

    @property
    def enabled(self) -> bool:
        return self.llm_client is not None

    async def review(self, request: ReviewRequest) -> ReviewerRecommendation:
        """
        Review a mention for false-positive risk

        Args:
            request: Mention text, type, current confidence and context

        Returns:
            ReviewerRecommendation (never raises)
        """
        if not self.llm_client:
            return ReviewerRecommendation(
                recommendation="flag",
                confidence=0.0,
                explanation="Automated reviewer disabled. Requires human review.",
            )

        prompt = self._build_review_prompt(request)

        try:
            response = await asyncio.wait_for(
                self.llm_client.messages.create(
                    model=self.model,
                    max_tokens=settings.llm_max_tokens,
                    temperature=settings.llm_temperature,
                    messages=[{"role": "user", "content": prompt}]
                ),
                timeout=self.timeout,
            )

            content = response.content[0].text if response.content else ""
            if not content or not content.strip():
                raise ValueError("Empty response from reviewer")

            recommendation = self.parse_review(content)
            logger.debug(
                f"Review complete for '{request.mention_text}': {recommendation.recommendation}"
            )
            return recommendation

        except Exception as e:
            logger.error(f"Review failed for '{request.mention_text}': {e}")
            return ReviewerRecommendation(
                recommendation="flag",
                confidence=0.0,
                explanation=f"Automated review failed: {e}. Requires human judgment.",
            )

    def _build_review_prompt(self, request: ReviewRequest) -> str:
        """
        Build reviewer prompt

        Args:
            request: Review request

        Returns:
            Prompt text
        """
        context = request.context_snippet[:500]

        return f"""You are a compliance curator for an accountability database documenting regime officials, sanctioned entities and their front men. Your primary goal is to prevent false positives (accusing innocent people of association with the regime). False negatives (missing guilty people) are acceptable, but false accusations are unacceptable.

Entity to Review:
- Extracted Text: "{request.mention_text}"
- Normalized: "{request.normalized_text}"
- Type: {request.entity_type}
- Our Confidence Score: {request.current_confidence}/5 ({confidence_label(request.current_confidence)})
- Language: {request.language}

Article Context:
"{context}..."

Your Task:
1. Assess risk of this being a false positive (innocent person misidentified as regime-connected)
2. Consider if the name is too common, generic, or ambiguous
3. Check for mistranslations or OCR errors
4. Suggest the correct entity type
5. Recommend whether to APPROVE, FLAG (needs human review), or INVESTIGATE (might be error/duplicate)

Format your response as:
RECOMMENDATION: [APPROVE|FLAG|INVESTIGATE]
CONFIDENCE: [0.0-1.0] how confident are you in this decision?
EXPLANATION: [2-3 sentences explaining your decision]
CATEGORY: [PERSON|ORG|LOCATION|ASSET]
ISSUES: [list any concerns, or "None" if clean]

Remember: we would rather miss 10 guilty people than wrongly accuse 1 innocent person. When in doubt, recommend FLAG for human review."""

    @staticmethod
    def parse_review(text: str) -> ReviewerRecommendation:
        """
        Parse the structured reviewer reply

        Args:
            text: Raw reply

        Returns:
            ReviewerRecommendation; "flag" with confidence 0 when no
            recommendation line is present
        """
        rec_match = _RECOMMENDATION.search(text)
        if not rec_match:
            logger.warning("Unparseable reviewer response, flagging for human review")
            return ReviewerRecommendation(
                recommendation="flag",
                confidence=0.0,
                explanation=text.strip(),
            )

        confidence = 0.0
        conf_match = _CONFIDENCE.search(text)
        if conf_match:
            try:
                confidence = float(conf_match.group(1))
            except ValueError:
                logger.warning(f"Invalid reviewer confidence: {conf_match.group(1)}")
        confidence = min(max(confidence, 0.0), 1.0)

        expl_match = _EXPLANATION.search(text)
        explanation = expl_match.group(1).strip() if expl_match else text.strip()

        cat_match = _CATEGORY.search(text)
        category = cat_match.group(1).upper() if cat_match else None

        concerns = ()
        issues_match = _ISSUES.search(text)
        if issues_match:
            issues = issues_match.group(1).strip()
            if issues and issues.strip('"').lower() != "none":
                concerns = tuple(s.strip() for s in issues.split(",") if s.strip())

        return ReviewerRecommendation(
            recommendation=rec_match.group(1).lower(),
            confidence=confidence,
            explanation=explanation,
            suggested_category=category,
            concerns=concerns,
        )
