"""
Tests for the per-article pipeline
"""
import pytest
from src.mention_resolution.core.deduplicator import MentionDeduplicator
from src.mention_resolution.core.entities import Article, EdgeType, NodeType, ReviewStatus
from src.mention_resolution.core.graph_db import InMemoryGraphStore
from src.mention_resolution.core.graph_upserter import GraphUpserter
from src.mention_resolution.core.identity_matcher import IdentityMatcher
from src.mention_resolution.core.orchestrator import TRANSIENT_ERROR_PREFIX, PipelineOrchestrator
from src.mention_resolution.core.repositories import (
    ArticleRepository,
    InMemoryReviewItemStore,
    MentionRepository,
    RelationRepository,
)
from src.mention_resolution.core.review_queue import CurationWorkflow

FRONT_MAN_TEXT = "Juan Pérez es testaferro de Nicolás Maduro."


class FlakyMentionRepository(MentionRepository):
    """Fails every write for one article"""

    def __init__(self, failing_article_id):
        super().__init__()
        self.failing_article_id = failing_article_id

    async def add(self, mention):
        if mention.source_article_id == self.failing_article_id:
            raise ConnectionError("staging database unavailable")
        return await super().add(mention)


class TestPipelineOrchestrator:
    """Test cases for PipelineOrchestrator"""

    @pytest.fixture(autouse=True)
    def _pipeline(self, registry):
        self.build(registry, MentionRepository())

    def build(self, registry, mentions):
        self.articles = ArticleRepository()
        self.mentions = mentions
        self.relations = RelationRepository()
        self.graph = InMemoryGraphStore()
        self.curation = CurationWorkflow(
            InMemoryReviewItemStore(),
            IdentityMatcher(registry, fuzzy_threshold=85, high_confidence_threshold=95),
            MentionDeduplicator(min_similarity=0.85),
            mention_repository=self.mentions,
        )
        self.orchestrator = PipelineOrchestrator(
            self.articles,
            self.mentions,
            self.relations,
            self.curation,
            GraphUpserter(self.graph),
            min_org_confidence=0.75,
        )

    async def _nodes_by_name(self):
        return {n.canonical_name: n for n in await self.graph.list_nodes()}

    @pytest.mark.asyncio
    async def test_end_to_end(self):
        await self.articles.add(Article(id="a1", raw_text=FRONT_MAN_TEXT))

        results = await self.orchestrator.process_pipeline()

        assert len(results) == 1
        result = results[0]
        assert result.succeeded
        assert result.mention_count == 2
        assert result.relation_count == 1
        assert result.nodes_created == 2
        assert result.edges_created == 1
        assert result.queued_for_review == 0
        assert result.identity_match_id == "ofac-maduro"

        nodes = await self._nodes_by_name()
        assert nodes["NICOLAS MADURO"].linked_identity_id == "ofac-maduro"
        assert nodes["JUAN PEREZ"].alt_names == ["Juan Pérez"]
        assert nodes["JUAN PEREZ"].source_ids["article_id"] == "a1"

        edge = (await self.graph.list_edges())[0]
        assert edge.type == EdgeType.FRONT_MAN_OF
        assert edge.src_node_id == nodes["JUAN PEREZ"].id
        assert edge.dst_node_id == nodes["NICOLAS MADURO"].id
        assert edge.weight == 0.85
        assert edge.evidence_ref["article_id"] == "a1"
        assert edge.evidence_ref["pattern"] == "front-man-of"

        assert (await self.articles.get("a1")).processed
        assert await self.orchestrator.process_pipeline() == []

    @pytest.mark.asyncio
    async def test_reprocessing_is_idempotent(self):
        article = await self.articles.add(Article(id="a1", raw_text=FRONT_MAN_TEXT))

        await self.orchestrator.process_article(article)
        again = await self.orchestrator.process_article(article)

        assert again.succeeded
        assert again.nodes_created == 0
        assert again.edges_created == 0
        assert len(await self.graph.list_nodes()) == 2
        assert len(await self.graph.list_edges()) == 1

    @pytest.mark.asyncio
    async def test_same_entity_across_articles_shares_node(self):
        await self.articles.add(Article(id="a1", raw_text=FRONT_MAN_TEXT))
        await self.articles.add(Article(id="a2", raw_text="Juan Pérez es testaferro de Nicolás Maduro Moros."))

        await self.orchestrator.process_pipeline()

        nodes = await self.graph.list_nodes()
        assert {n.type for n in nodes} == {NodeType.PERSON}
        juan = (await self._nodes_by_name())["JUAN PEREZ"]
        assert juan.alt_names == ["Juan Pérez"]

    @pytest.mark.asyncio
    async def test_low_confidence_org_is_not_curated(self):
        article = await self.articles.add(Article(id="a1", raw_text="Se reunió la Fiscalía General."))

        result = await self.orchestrator.process_article(article)

        assert result.mention_count == 1
        assert result.nodes_created == 0
        assert result.queued_for_review == 0
        assert await self.graph.list_nodes() == []

    @pytest.mark.asyncio
    async def test_failure_is_isolated_per_article(self, registry):
        self.build(registry, FlakyMentionRepository("bad"))
        await self.articles.add(Article(id="bad", raw_text=FRONT_MAN_TEXT))
        await self.articles.add(Article(id="good", raw_text="Carlos Ruiz es propietario de Inversiones Delta C.A."))

        results = {r.article_id: r for r in await self.orchestrator.process_pipeline()}

        assert not results["bad"].succeeded
        assert results["bad"].errors[0].startswith(TRANSIENT_ERROR_PREFIX)
        assert results["good"].succeeded
        assert results["good"].edges_created == 1
        assert not (await self.articles.get("bad")).processed
        assert (await self.articles.get("good")).processed

    @pytest.mark.asyncio
    async def test_late_approval_adds_node_and_edge(self):
        article = await self.articles.add(
            Article(id="a1", raw_text="Juan Pérez es testaferro de Nico Maduro.")
        )

        result = await self.orchestrator.process_article(article)

        assert result.nodes_created == 1
        assert result.edges_created == 0
        assert result.queued_for_review == 1

        pending = await self.curation.pending_items()
        assert [i.mention.raw_text for i in pending] == ["Nico Maduro"]

        await self.curation.approve(pending[0].mention_id, "curator-1")

        nodes = await self._nodes_by_name()
        assert nodes["NICO MADURO"].linked_identity_id == "ofac-maduro"
        edges = await self.graph.list_edges()
        assert len(edges) == 1
        assert edges[0].dst_node_id == nodes["NICO MADURO"].id

    @pytest.mark.asyncio
    async def test_rejected_mention_never_reaches_graph(self):
        article = await self.articles.add(
            Article(id="a1", raw_text="Juan Pérez es testaferro de Nico Maduro.")
        )
        await self.orchestrator.process_article(article)
        pending = (await self.curation.pending_items())[0]

        await self.curation.reject(pending.mention_id, "curator-1", "Ambiguous nickname")

        assert "NICO MADURO" not in await self._nodes_by_name()
        assert await self.graph.list_edges() == []

    @pytest.mark.asyncio
    async def test_merged_mention_folds_into_primary_node(self):
        await self.articles.add(Article(id="a1", raw_text="Juan Pérez es testaferro de Nico Maduro."))
        await self.articles.add(Article(id="a2", raw_text="Juan Pérez es testaferro de Nico Madur."))
        await self.orchestrator.process_pipeline()

        pending = {i.mention.raw_text: i for i in await self.curation.pending_items()}
        primary = pending["Nico Maduro"]
        duplicate = pending["Nico Madur"]

        await self.curation.merge_duplicates(primary.mention_id, [duplicate.mention_id], "curator-1")

        nodes = await self._nodes_by_name()
        assert "NICO MADUR" not in nodes
        assert nodes["NICO MADURO"].alt_names == ["Nico Maduro", "Nico Madur"]
        assert len(await self.graph.list_edges()) == 1
        assert (await self.curation.get(duplicate.mention_id)).status == ReviewStatus.MERGED
