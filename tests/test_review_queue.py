"""
Tests for the curation workflow
"""
import pytest
from src.mention_resolution.core.contextual_reasoning import AutomatedReviewer
from src.mention_resolution.core.deduplicator import MentionDeduplicator
from src.mention_resolution.core.entities import ReviewerRecommendation, ReviewStatus
from src.mention_resolution.core.exceptions import InvalidTransitionError, ReviewItemNotFoundError
from src.mention_resolution.core.identity_matcher import IdentityMatcher
from src.mention_resolution.core.repositories import InMemoryReviewItemStore, MentionRepository
from src.mention_resolution.core.review_queue import (
    AUTOMATED_REVIEWER,
    REGISTRY_AUTO_MATCH,
    CurationWorkflow,
)


class InterleavingStore(InMemoryReviewItemStore):
    """Runs a competing write just before the first update of one item"""

    def __init__(self, target_id, competing):
        super().__init__()
        self.target_id = target_id
        self.competing = competing

    async def update(self, mention_id, mutate, expected_status=None, action="update"):
        if mention_id == self.target_id and self.competing is not None:
            competing, self.competing = self.competing, None
            await competing()
        return await super().update(mention_id, mutate, expected_status, action)


class TestCurationWorkflow:
    """Test cases for CurationWorkflow"""

    @pytest.fixture(autouse=True)
    def _workflow(self, registry):
        self.store = InMemoryReviewItemStore()
        self.mentions = MentionRepository()
        self.matcher = IdentityMatcher(registry, fuzzy_threshold=85, high_confidence_threshold=95)
        self.workflow = CurationWorkflow(
            self.store,
            self.matcher,
            MentionDeduplicator(min_similarity=0.85),
            mention_repository=self.mentions,
            auto_approve_confidence=0.85,
        )
        self.decisions = []

        async def record(item):
            self.decisions.append((item.mention_id, item.status))

        self.workflow.on_decision(record)

    async def _enqueue(self, mention, **kwargs):
        await self.mentions.add(mention)
        return await self.workflow.enqueue(mention, **kwargs)

    @pytest.mark.asyncio
    async def test_high_confidence_registry_match_auto_approves(self, make_mention):
        item = await self._enqueue(make_mention("Nicolás Maduro"))

        assert item.status == ReviewStatus.AUTO_APPROVED
        assert item.decided_by == REGISTRY_AUTO_MATCH
        assert item.identity_match.identity_id == "ofac-maduro"
        assert "Auto-approved via registry match" in item.notes

    @pytest.mark.asyncio
    async def test_clean_mention_without_match_auto_approves(self, make_mention):
        item = await self._enqueue(make_mention("Juan Pérez"))

        assert item.status == ReviewStatus.AUTO_APPROVED
        assert item.identity_match is None
        assert item.issues == []

    @pytest.mark.asyncio
    async def test_flagged_mention_is_pending(self, make_mention):
        item = await self._enqueue(make_mention("Cuando"))

        assert item.status == ReviewStatus.PENDING
        assert item.issues[0].startswith("Likely not a person name")

    @pytest.mark.asyncio
    async def test_fuzzy_registry_match_is_pending(self, make_mention):
        candidate = make_mention("Nico Madur")
        await self.mentions.add(candidate)

        item = await self._enqueue(make_mention("Nico Maduro"))

        assert item.status == ReviewStatus.PENDING
        assert item.identity_match.score == 94
        assert item.duplicate_candidates[0][0] == candidate.id

    @pytest.mark.asyncio
    async def test_enqueue_is_idempotent(self, make_mention):
        mention = make_mention("Cuando")
        first = await self._enqueue(mention)
        second = await self._enqueue(mention)

        assert first.mention_id == second.mention_id
        assert len(await self.store.list()) == 1

    @pytest.mark.asyncio
    async def test_approve(self, make_mention):
        mention = make_mention("Cuando")
        await self._enqueue(mention)

        item = await self.workflow.approve(mention.id, "curator-1", notes="Checked the source")

        assert item.status == ReviewStatus.APPROVED
        assert item.decided_by == "curator-1"
        assert item.decided_at is not None
        assert item.notes == "Checked the source"
        assert self.decisions == [(mention.id, ReviewStatus.APPROVED)]

    @pytest.mark.asyncio
    async def test_reject(self, make_mention):
        mention = make_mention("Cuando")
        await self._enqueue(mention)

        item = await self.workflow.reject(mention.id, "curator-1", "Not a name")

        assert item.status == ReviewStatus.REJECTED
        assert item.notes == "Rejected: Not a name"

    @pytest.mark.asyncio
    async def test_decisions_only_from_pending(self, make_mention):
        pending = make_mention("Cuando")
        auto = make_mention("Juan Pérez")
        await self._enqueue(pending)
        await self._enqueue(auto)
        await self.workflow.approve(pending.id, "curator-1")

        with pytest.raises(InvalidTransitionError):
            await self.workflow.approve(pending.id, "curator-2")
        with pytest.raises(InvalidTransitionError):
            await self.workflow.reject(auto.id, "curator-1", "late")

        assert (await self.workflow.get(pending.id)).decided_by == "curator-1"

    @pytest.mark.asyncio
    async def test_unknown_mention(self):
        with pytest.raises(ReviewItemNotFoundError):
            await self.workflow.approve("missing", "curator-1")
        with pytest.raises(ReviewItemNotFoundError):
            await self.workflow.get("missing")

    @pytest.mark.asyncio
    async def test_reviewer_approval_above_threshold(self, make_mention):
        mention = make_mention("Cuando")
        await self._enqueue(mention)

        item = await self.workflow.apply_review(
            mention.id, ReviewerRecommendation("approve", 0.9, "Looks right")
        )

        assert item.status == ReviewStatus.AUTO_APPROVED
        assert item.decided_by == AUTOMATED_REVIEWER
        assert self.decisions == [(mention.id, ReviewStatus.AUTO_APPROVED)]

    @pytest.mark.asyncio
    async def test_reviewer_approval_at_threshold_stays_pending(self, make_mention):
        mention = make_mention("Cuando")
        await self._enqueue(mention)

        item = await self.workflow.apply_review(
            mention.id, ReviewerRecommendation("approve", 0.85, "Probably fine")
        )

        assert item.status == ReviewStatus.PENDING
        assert item.reviewer_recommendation.confidence == 0.85
        assert self.decisions == []

    @pytest.mark.asyncio
    async def test_reviewer_investigate_adds_alert(self, make_mention):
        mention = make_mention("Cuando")
        await self._enqueue(mention)

        item = await self.workflow.apply_review(
            mention.id, ReviewerRecommendation("investigate", 0.7, "Probably an adverb")
        )

        assert item.status == ReviewStatus.PENDING
        assert item.issues[-1] == "Reviewer alert: Probably an adverb"

    @pytest.mark.asyncio
    async def test_reviewer_cannot_override_curator(self, make_mention):
        mention = make_mention("Cuando")
        await self._enqueue(mention)
        await self.workflow.reject(mention.id, "curator-1", "Not a name")

        item = await self.workflow.apply_review(
            mention.id, ReviewerRecommendation("approve", 0.99, "Fine")
        )

        assert item.status == ReviewStatus.REJECTED
        assert item.reviewer_recommendation.recommendation == "approve"

    @pytest.mark.asyncio
    async def test_background_review(self, registry, fake_llm, make_mention):
        reply = "RECOMMENDATION: APPROVE\nCONFIDENCE: 0.95\nEXPLANATION: Known alias.\nISSUES: None"
        workflow = CurationWorkflow(
            self.store,
            self.matcher,
            reviewer=AutomatedReviewer(fake_llm(reply), timeout=5),
            auto_approve_confidence=0.85,
        )

        mention = make_mention("Nico Maduro")
        item = await workflow.enqueue(mention, candidates=[], context_snippet="Nico Maduro habló.")
        assert item.status == ReviewStatus.PENDING

        await workflow.wait_for_reviews()

        reviewed = await workflow.get(mention.id)
        assert reviewed.status == ReviewStatus.AUTO_APPROVED
        assert reviewed.notes == "Known alias."

    @pytest.mark.asyncio
    async def test_merge_duplicates(self, make_mention):
        primary = make_mention("Nico Maduro")
        duplicate = make_mention("Nico Madur")
        await self._enqueue(primary)
        await self._enqueue(duplicate)

        approved = await self.workflow.merge_duplicates(primary.id, [duplicate.id], "curator-1")

        merged = await self.workflow.get(duplicate.id)
        assert approved.status == ReviewStatus.APPROVED
        assert merged.status == ReviewStatus.MERGED
        assert merged.merged_into == primary.id
        # Primary is announced before its duplicates
        assert self.decisions == [
            (primary.id, ReviewStatus.APPROVED),
            (duplicate.id, ReviewStatus.MERGED),
        ]

    @pytest.mark.asyncio
    async def test_merge_keeps_longer_surface_form(self, make_mention):
        primary = make_mention("Nico Madur")
        duplicate = make_mention("Nico Maduro")
        await self._enqueue(primary)
        await self._enqueue(duplicate)

        approved = await self.workflow.merge_duplicates(primary.id, [duplicate.id], "curator-1")

        assert approved.mention.id == primary.id
        assert approved.mention.raw_text == "Nico Maduro"
        assert (await self.mentions.get(primary.id)).raw_text == "Nico Maduro"

    @pytest.mark.asyncio
    async def test_merge_requires_pending_duplicates(self, make_mention):
        primary = make_mention("Cuando")
        duplicate = make_mention("Juan Pérez")
        await self._enqueue(primary)
        await self._enqueue(duplicate)

        with pytest.raises(InvalidTransitionError):
            await self.workflow.merge_duplicates(primary.id, [duplicate.id], "curator-1")

    @pytest.mark.asyncio
    async def test_merge_into_rejected_primary_leaves_duplicates_pending(self, make_mention):
        primary = make_mention("Nico Maduro")
        duplicate = make_mention("Nico Madur")
        await self._enqueue(primary)
        await self._enqueue(duplicate)
        await self.workflow.reject(primary.id, "curator-2", "Ambiguous nickname")

        with pytest.raises(InvalidTransitionError):
            await self.workflow.merge_duplicates(primary.id, [duplicate.id], "curator-1")

        untouched = await self.workflow.get(duplicate.id)
        assert untouched.status == ReviewStatus.PENDING
        assert untouched.merged_into is None
        assert untouched.decided_by is None

    @pytest.mark.asyncio
    async def test_merge_with_one_decided_duplicate_writes_nothing(self, make_mention):
        primary = make_mention("Nico Maduro")
        first = make_mention("Nico Madur")
        second = make_mention("Cuando")
        for mention in (primary, first, second):
            await self._enqueue(mention)
        await self.workflow.approve(second.id, "curator-2")

        with pytest.raises(InvalidTransitionError):
            await self.workflow.merge_duplicates(primary.id, [first.id, second.id], "curator-1")

        assert (await self.workflow.get(primary.id)).status == ReviewStatus.PENDING
        assert (await self.workflow.get(first.id)).status == ReviewStatus.PENDING
        assert (await self.workflow.get(first.id)).merged_into is None
        assert self.decisions == [(second.id, ReviewStatus.APPROVED)]

    @pytest.mark.asyncio
    async def test_merge_losing_race_on_duplicate_restores_earlier_ones(self, make_mention):
        primary = make_mention("Nico Maduro")
        first = make_mention("Nico Madur")
        second = make_mention("Cuando")
        self.store = self.workflow.store = InterleavingStore(
            second.id, lambda: self.workflow.approve(second.id, "curator-2")
        )
        for mention in (primary, first, second):
            await self._enqueue(mention)

        with pytest.raises(InvalidTransitionError):
            await self.workflow.merge_duplicates(primary.id, [first.id, second.id], "curator-1")

        restored = await self.workflow.get(first.id)
        assert restored.status == ReviewStatus.PENDING
        assert restored.merged_into is None
        assert restored.decided_at is None
        assert (await self.workflow.get(primary.id)).status == ReviewStatus.PENDING
        assert (await self.workflow.get(second.id)).status == ReviewStatus.APPROVED
        assert self.decisions == [(second.id, ReviewStatus.APPROVED)]

    @pytest.mark.asyncio
    async def test_merge_losing_race_on_primary_restores_duplicates(self, make_mention):
        primary = make_mention("Nico Maduro")
        duplicate = make_mention("Nico Madur")
        self.store = self.workflow.store = InterleavingStore(
            primary.id, lambda: self.workflow.reject(primary.id, "curator-2", "Not the same person")
        )
        await self._enqueue(primary)
        await self._enqueue(duplicate)

        with pytest.raises(InvalidTransitionError):
            await self.workflow.merge_duplicates(primary.id, [duplicate.id], "curator-1")

        assert (await self.workflow.get(duplicate.id)).status == ReviewStatus.PENDING
        assert (await self.workflow.get(primary.id)).status == ReviewStatus.REJECTED
        assert (await self.mentions.get(primary.id)).raw_text == "Nico Maduro"

    @pytest.mark.asyncio
    async def test_merge_rejects_primary_among_duplicates(self, make_mention):
        primary = make_mention("Nico Maduro")
        await self._enqueue(primary)

        with pytest.raises(ValueError):
            await self.workflow.merge_duplicates(primary.id, [primary.id], "curator-1")
        with pytest.raises(ValueError):
            await self.workflow.merge_duplicates("other", [primary.id, primary.id], "curator-1")

        assert (await self.workflow.get(primary.id)).status == ReviewStatus.PENDING

    @pytest.mark.asyncio
    async def test_listener_failure_does_not_break_decision(self, make_mention):
        async def broken(item):
            raise RuntimeError("graph unavailable")

        self.workflow.on_decision(broken)
        mention = make_mention("Cuando")
        await self._enqueue(mention)

        item = await self.workflow.approve(mention.id, "curator-1")

        assert item.status == ReviewStatus.APPROVED
        assert self.decisions == [(mention.id, ReviewStatus.APPROVED)]

    @pytest.mark.asyncio
    async def test_stats_and_issue_filter(self, make_mention):
        await self._enqueue(make_mention("Cuando"))
        await self._enqueue(make_mention("Caracas"))
        await self._enqueue(make_mention("Juan Pérez"))

        stats = await self.workflow.stats()

        assert stats["total"] == 3
        assert stats["pending"] == 2
        assert stats["auto_approved"] == 1
        assert {"issue": "Geographic term misclassified as PERSON", "count": 1} in stats["top_issues"]

        geo = await self.workflow.pending_by_issue("Geographic")
        assert [i.mention.raw_text for i in geo] == ["Caracas"]
