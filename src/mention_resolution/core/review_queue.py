"""
Curation workflow: automatic rules, automated reviewer and human curator
decisions gating what enters the graph
"""
import asyncio
import logging
from collections import Counter
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Set

from src.mention_resolution.core.contextual_reasoning import AutomatedReviewer, ReviewRequest
from src.mention_resolution.core.deduplicator import MentionDeduplicator
from src.mention_resolution.core.entities import (
    ConfidenceLevel,
    IdentityMatch,
    Mention,
    MentionType,
    ReviewerRecommendation,
    ReviewQueueItem,
    ReviewStatus,
)
from src.mention_resolution.core.exceptions import InvalidTransitionError, ReviewItemNotFoundError
from src.mention_resolution.core.identity_matcher import IdentityMatcher
from config.settings import settings

logger = logging.getLogger(__name__)

REGISTRY_AUTO_MATCH = "registry-auto-match"
AUTOMATED_REVIEWER = "automated-reviewer"

DecisionListener = Callable[[ReviewQueueItem], Awaitable[None]]


class CurationWorkflow:
    """
    Review queue state machine. Items start PENDING or are auto-approved at
    creation; every later transition is a compare-and-set on the stored item.
    """

    def __init__(
        self,
        store,
        matcher: IdentityMatcher,
        deduplicator: Optional[MentionDeduplicator] = None,
        reviewer: Optional[AutomatedReviewer] = None,
        mention_repository=None,
        auto_approve_confidence: Optional[float] = None
    ):
        """
        Initialize curation workflow

        Args:
            store: InMemoryReviewItemStore or RedisReviewItemStore
            matcher: Registry matcher
            deduplicator: Mention deduplicator
            reviewer: Automated reviewer; None skips background review
            mention_repository: Source of duplicate candidates and target of merges
            auto_approve_confidence: Reviewer confidence above which "approve" auto-approves
        """
        self.store = store
        self.matcher = matcher
        self.deduplicator = deduplicator or MentionDeduplicator()
        self.reviewer = reviewer
        self.mention_repository = mention_repository
        self.auto_approve_confidence = (
            auto_approve_confidence if auto_approve_confidence is not None
            else settings.reviewer_auto_approve_confidence
        )
        self._listeners: List[DecisionListener] = []
        self._review_tasks: Set[asyncio.Task] = set()

    def on_decision(self, callback: DecisionListener) -> None:
        """Register an async callback run for every transition out of PENDING"""
        self._listeners.append(callback)

    async def enqueue(
        self,
        mention: Mention,
        candidates: Optional[Iterable[Mention]] = None,
        context_snippet: str = ""
    ) -> ReviewQueueItem:
        """
        Create the review item for a mention

        Args:
            mention: Mention to curate
            candidates: Mentions to check for duplicates (defaults to the
                mention repository)
            context_snippet: Article text handed to the automated reviewer

        Returns:
            Stored ReviewQueueItem (the existing one if already enqueued)
        """
        existing = await self.store.get(mention.id)
        if existing:
            return existing

        identity_match = self._match_identity(mention)

        if identity_match and identity_match.score >= self.matcher.high_confidence_threshold:
            item = self._auto_approved_item(
                mention,
                identity_match=identity_match,
                decided_by=REGISTRY_AUTO_MATCH,
                notes=(
                    f"Auto-approved via registry match: {identity_match.identity.canonical_name} "
                    f"({identity_match.score}% {identity_match.match_type.value})"
                ),
            )
            logger.info(
                f"[Registry auto-approve] '{mention.raw_text}' -> "
                f"'{identity_match.identity.canonical_name}' ({identity_match.score}%)"
            )
            stored, _ = await self.store.add_if_absent(item)
            return stored

        flags = self.deduplicator.flag_for_review(mention)

        if not flags.should_review and not identity_match:
            item = self._auto_approved_item(mention)
            logger.debug(f"Auto-approved clean mention: '{mention.raw_text}'")
            stored, _ = await self.store.add_if_absent(item)
            return stored

        if candidates is None and self.mention_repository is not None:
            candidates = await self.mention_repository.list_by_type(mention.type)
        duplicates = self.deduplicator.find_duplicates(mention, candidates or [])

        now = datetime.now()
        item = ReviewQueueItem(
            mention_id=mention.id,
            mention=mention,
            status=ReviewStatus.PENDING,
            issues=list(flags.issues),
            duplicate_candidates=[(d.mention_id, d.similarity) for d in duplicates],
            identity_match=identity_match,
            created_at=now,
            updated_at=now,
        )

        stored, created = await self.store.add_if_absent(item)
        if created:
            logger.info(
                f"Queued mention for review: '{mention.raw_text}' ({len(flags.issues)} issues, "
                f"{len(duplicates)} potential duplicates, registry match: {bool(identity_match)})"
            )
            self._schedule_review(stored, context_snippet)
        return stored

    async def apply_review(self, mention_id: str, recommendation: ReviewerRecommendation) -> ReviewQueueItem:
        """
        Apply an automated reviewer result to a stored item

        Args:
            mention_id: Item key
            recommendation: Reviewer output

        Returns:
            Updated item
        """
        previous: Dict[str, ReviewStatus] = {}

        def mutate(item: ReviewQueueItem) -> None:
            previous["status"] = item.status
            item.reviewer_recommendation = recommendation
            item.updated_at = datetime.now()

            if item.status.is_terminal:
                return

            if (
                recommendation.recommendation == "approve" and
                recommendation.confidence > self.auto_approve_confidence
            ):
                item.status = ReviewStatus.AUTO_APPROVED
                item.decided_by = AUTOMATED_REVIEWER
                item.decided_at = item.updated_at
                item.notes = recommendation.explanation
            elif recommendation.recommendation == "investigate":
                item.issues.append(f"Reviewer alert: {recommendation.explanation}")

        updated = await self.store.update(mention_id, mutate)

        if previous.get("status") == ReviewStatus.PENDING and updated.status.is_terminal:
            logger.info(
                f"[Reviewer] Auto-approved '{updated.mention.raw_text}' "
                f"(confidence: {recommendation.confidence})"
            )
            await self._notify(updated)
        return updated

    async def approve(self, mention_id: str, curator_id: str, notes: Optional[str] = None) -> ReviewQueueItem:
        """
        Curator approves a pending mention

        Raises:
            ReviewItemNotFoundError: Unknown mention id
            InvalidTransitionError: Item is not PENDING
        """
        def mutate(item: ReviewQueueItem) -> None:
            self._decide(item, ReviewStatus.APPROVED, curator_id, notes)

        item = await self.store.update(mention_id, mutate, ReviewStatus.PENDING, "approve")
        logger.info(f"Mention approved: '{item.mention.raw_text}' by curator {curator_id}")
        await self._notify(item)
        return item

    async def reject(self, mention_id: str, curator_id: str, reason: str) -> ReviewQueueItem:
        """
        Curator rejects a pending mention; it never reaches the graph

        Raises:
            ReviewItemNotFoundError: Unknown mention id
            InvalidTransitionError: Item is not PENDING
        """
        def mutate(item: ReviewQueueItem) -> None:
            self._decide(item, ReviewStatus.REJECTED, curator_id, f"Rejected: {reason}")

        item = await self.store.update(mention_id, mutate, ReviewStatus.PENDING, "reject")
        logger.info(
            f"Mention rejected: '{item.mention.raw_text}' by curator {curator_id}. Reason: {reason}"
        )
        await self._notify(item)
        return item

    async def merge_duplicates(
        self,
        primary_id: str,
        duplicate_ids: List[str],
        curator_id: str
    ) -> ReviewQueueItem:
        """
        Fold duplicate mentions into a primary one. Either every item moves
        or none does: all of them are checked before the first write, and
        duplicates already marked are restored if a later write loses a race.

        Args:
            primary_id: Mention that survives (approved)
            duplicate_ids: Mentions marked MERGED into the primary
            curator_id: Deciding curator

        Returns:
            Approved primary item

        Raises:
            ReviewItemNotFoundError: Unknown primary or duplicate id
            InvalidTransitionError: Primary or a duplicate is not PENDING
            ValueError: Primary listed among its duplicates, or a duplicate listed twice
        """
        if primary_id in duplicate_ids:
            raise ValueError(f"Mention {primary_id} cannot be merged into itself")
        if len(set(duplicate_ids)) != len(duplicate_ids):
            raise ValueError(f"Duplicate ids listed more than once: {duplicate_ids}")

        primary = await self.get(primary_id)
        duplicates = [await self.get(dup_id) for dup_id in duplicate_ids]

        for item in [primary] + duplicates:
            if item.status != ReviewStatus.PENDING:
                raise InvalidTransitionError(item.mention_id, item.status.value, "merge")

        merged_mention = primary.mention
        for duplicate in duplicates:
            merged_mention = self.deduplicator.merge_entities(merged_mention, duplicate.mention)

        def mark_merged(item: ReviewQueueItem) -> None:
            self._decide(item, ReviewStatus.MERGED, curator_id, f"Merged into {primary_id}")
            item.merged_into = primary_id

        def approve_primary(item: ReviewQueueItem) -> None:
            self._decide(
                item, ReviewStatus.APPROVED, curator_id,
                f"Merged {len(duplicate_ids)} duplicate(s) into this mention",
            )
            item.mention = merged_mention

        merged_items = []
        try:
            for duplicate in duplicates:
                merged_items.append(await self.store.update(
                    duplicate.mention_id, mark_merged, ReviewStatus.PENDING, "merge"
                ))
            approved = await self.store.update(primary_id, approve_primary, ReviewStatus.PENDING, "merge")
        except InvalidTransitionError as e:
            logger.warning(f"Merge into {primary_id} lost a race ({e}); restoring {len(merged_items)} item(s)")
            await self._restore_pending(merged_items)
            raise

        if self.mention_repository is not None and merged_mention is not primary.mention:
            await self.mention_repository.replace(merged_mention)

        logger.info(
            f"Merged {len(duplicate_ids)} duplicates into '{approved.mention.raw_text}' by curator {curator_id}"
        )

        # Primary first so its node exists when duplicates are folded in
        await self._notify(approved)
        for item in merged_items:
            await self._notify(item)
        return approved

    async def _restore_pending(self, items: List[ReviewQueueItem]) -> None:
        """Undo MERGED marks written by an unfinished merge"""
        def restore(item: ReviewQueueItem) -> None:
            item.status = ReviewStatus.PENDING
            item.decided_by = None
            item.decided_at = None
            item.notes = None
            item.merged_into = None
            item.updated_at = datetime.now()

        for item in items:
            try:
                await self.store.update(item.mention_id, restore, ReviewStatus.MERGED, "restore")
            except InvalidTransitionError as e:
                logger.error(f"Could not restore {item.mention_id} after failed merge: {e}")

    async def get(self, mention_id: str) -> ReviewQueueItem:
        """
        Get review item

        Raises:
            ReviewItemNotFoundError: Unknown mention id
        """
        item = await self.store.get(mention_id)
        if item is None:
            raise ReviewItemNotFoundError(mention_id)
        return item

    async def pending_items(self) -> List[ReviewQueueItem]:
        return await self.store.list(ReviewStatus.PENDING)

    async def pending_by_issue(self, keyword: str) -> List[ReviewQueueItem]:
        """Pending items with an issue containing the keyword"""
        return [
            item for item in await self.pending_items()
            if any(keyword in issue for issue in item.issues)
        ]

    async def stats(self) -> Dict[str, Any]:
        """
        Queue statistics

        Returns:
            Counts per status plus the five most common issue categories
        """
        items = await self.store.list()
        counts = Counter(item.status for item in items)

        categories = Counter()
        for item in items:
            for issue in item.issues:
                categories[issue.split(":")[0]] += 1

        return {
            "total": len(items),
            "pending": counts[ReviewStatus.PENDING],
            "approved": counts[ReviewStatus.APPROVED],
            "rejected": counts[ReviewStatus.REJECTED],
            "merged": counts[ReviewStatus.MERGED],
            "auto_approved": counts[ReviewStatus.AUTO_APPROVED],
            "top_issues": [
                {"issue": issue, "count": count}
                for issue, count in categories.most_common(5)
            ],
        }

    async def wait_for_reviews(self) -> None:
        """Wait for background reviewer tasks, including ones they schedule"""
        while True:
            pending = [task for task in self._review_tasks if not task.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    def _match_identity(self, mention: Mention) -> Optional[IdentityMatch]:
        if mention.type not in (MentionType.PERSON, MentionType.ORG):
            return None
        try:
            return self.matcher.match(mention.raw_text, mention.type)
        except Exception as e:
            logger.error(f"Registry matching failed for '{mention.raw_text}': {e}")
            return None

    @staticmethod
    def _auto_approved_item(
        mention: Mention,
        identity_match: Optional[IdentityMatch] = None,
        decided_by: Optional[str] = None,
        notes: Optional[str] = None
    ) -> ReviewQueueItem:
        now = datetime.now()
        return ReviewQueueItem(
            mention_id=mention.id,
            mention=mention,
            status=ReviewStatus.AUTO_APPROVED,
            identity_match=identity_match,
            decided_by=decided_by,
            decided_at=now,
            notes=notes,
            created_at=now,
            updated_at=now,
        )

    @staticmethod
    def _decide(item: ReviewQueueItem, status: ReviewStatus, curator_id: str, notes: Optional[str]) -> None:
        item.status = status
        item.decided_by = curator_id
        item.decided_at = datetime.now()
        item.updated_at = item.decided_at
        item.notes = notes

    def _schedule_review(self, item: ReviewQueueItem, context_snippet: str) -> None:
        if self.reviewer is None:
            return

        task = asyncio.create_task(self._run_review(item, context_snippet))
        self._review_tasks.add(task)
        task.add_done_callback(self._review_tasks.discard)

    async def _run_review(self, item: ReviewQueueItem, context_snippet: str) -> None:
        logger.debug(f"Starting automated review for '{item.mention.raw_text}'")
        request = ReviewRequest.from_mention(
            item.mention,
            context_snippet=self._review_context(item, context_snippet),
            current_confidence=ConfidenceLevel.CREDIBLE,
        )

        try:
            recommendation = await self.reviewer.review(request)
            await self.apply_review(item.mention_id, recommendation)
        except Exception as e:
            logger.exception(f"Automated review failed for {item.mention_id}: {e}")

    @staticmethod
    def _review_context(item: ReviewQueueItem, context_snippet: str) -> str:
        """Article context, plus the registry candidate when there is one"""
        parts = [context_snippet or f"{item.mention.raw_text} from article context"]

        match = item.identity_match
        if match:
            identity = match.identity
            parts.append(
                f"Registry match found: {identity.canonical_name}; "
                f"score {match.score}% ({match.match_type.value} match on '{match.matched_on}'); "
                f"sanction programs: {', '.join(sorted(identity.sanction_programs)) or 'N/A'}; "
                f"aliases: {', '.join(sorted(identity.aliases)) or 'N/A'}; "
                f"source: {identity.source_authority or 'N/A'}. "
                f"Consider name variations, article context and common-name false positives."
            )

        return "\n".join(parts)

    async def _notify(self, item: ReviewQueueItem) -> None:
        for listener in self._listeners:
            try:
                await listener(item)
            except Exception as e:
                logger.exception(f"Decision listener failed for {item.mention_id}: {e}")
