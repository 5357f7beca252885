"""
Per-article pipeline: extract, stage, curate, upsert
"""
import logging
from typing import Dict, List, Optional

from src.mention_resolution.core.entities import (
    Article,
    Mention,
    MentionType,
    NodeType,
    PipelineResult,
    RelationMention,
    ReviewQueueItem,
    ReviewStatus,
)
from src.mention_resolution.core.entity_extractor import MentionExtractor
from src.mention_resolution.core.exceptions import TransientError
from src.mention_resolution.core.graph_upserter import GraphUpserter
from src.mention_resolution.core.review_queue import CurationWorkflow
from config.settings import settings

logger = logging.getLogger(__name__)

TRANSIENT_ERROR_PREFIX = "transient:"

_NODE_TYPES = {
    MentionType.PERSON: NodeType.PERSON,
    MentionType.ORG: NodeType.ORG,
}


class PipelineOrchestrator:
    """
    Run articles through extraction, curation and graph upserts.

    Nodes are only written for mentions whose review item is approving;
    mentions approved later are picked up through the curation listener.
    """

    def __init__(
        self,
        articles,
        mentions,
        relations,
        curation: CurationWorkflow,
        upserter: GraphUpserter,
        extractor: Optional[MentionExtractor] = None,
        min_org_confidence: Optional[float] = None
    ):
        """
        Initialize pipeline orchestrator

        Args:
            articles: Article repository
            mentions: Mention repository
            relations: Relation repository
            curation: Curation workflow
            upserter: Graph upserter
            extractor: Mention extractor
            min_org_confidence: Minimum extraction confidence for ORG curation
        """
        self.articles = articles
        self.mentions = mentions
        self.relations = relations
        self.curation = curation
        self.upserter = upserter
        self.extractor = extractor or MentionExtractor()
        self.min_org_confidence = (
            min_org_confidence if min_org_confidence is not None
            else settings.min_org_extraction_confidence
        )
        # mention id -> node id for approved mentions
        self._mention_nodes: Dict[str, str] = {}

        self.curation.on_decision(self._on_decision)

    async def process_pipeline(self, limit: Optional[int] = None) -> List[PipelineResult]:
        """
        Process unprocessed articles one at a time

        Args:
            limit: Maximum articles (defaults to the batch size setting)

        Returns:
            One PipelineResult per article
        """
        limit = limit if limit is not None else settings.pipeline_batch_size
        articles = await self.articles.fetch_unprocessed(limit)
        logger.info(f"Processing {len(articles)} articles")

        results = []
        for article in articles:
            results.append(await self.process_article(article))

        failed = sum(1 for r in results if not r.succeeded)
        logger.info(f"Pipeline run finished: {len(results) - failed} succeeded, {failed} failed")
        return results

    async def process_article(self, article: Article) -> PipelineResult:
        """
        Process one article; failures are recorded on the result, never raised

        Args:
            article: Article to process

        Returns:
            PipelineResult
        """
        result = PipelineResult(article_id=article.id)

        try:
            await self._process(article, result)
            await self.articles.mark_processed(article.id)
        except (TransientError, ConnectionError, TimeoutError) as e:
            logger.error(f"Transient failure processing article {article.id}: {e}")
            result.errors.append(f"{TRANSIENT_ERROR_PREFIX} {e}")
        except Exception as e:
            logger.exception(f"Failed to process article {article.id}: {e}")
            result.errors.append(str(e))

        return result

    async def _process(self, article: Article, result: PipelineResult) -> None:
        extraction = self.extractor.extract(article.raw_text, article.language, article.id)

        mentions: List[Mention] = []
        relations: List[RelationMention] = []
        for item in extraction:
            if isinstance(item, Mention):
                await self.mentions.add(item)
                mentions.append(item)
            else:
                await self.relations.add(item)
                relations.append(item)

        result.mention_count = len(mentions)
        result.relation_count = len(relations)

        for mention in mentions:
            if not self._should_curate(mention):
                continue

            item = await self.curation.enqueue(
                mention,
                context_snippet=self._context_for(article.raw_text, mention),
            )

            if item.status == ReviewStatus.PENDING:
                result.queued_for_review += 1
            elif item.status.is_approving:
                created = await self._upsert_mention_node(item)
                result.nodes_created += int(created)

            if item.identity_match and result.identity_match_id is None:
                result.identity_match_id = item.identity_match.identity_id

        for relation in relations:
            created = await self._upsert_relation_edge(relation)
            result.edges_created += int(created)

        logger.info(
            f"Article {article.id}: {result.mention_count} mentions, {result.relation_count} relations, "
            f"{result.nodes_created} nodes, {result.edges_created} edges, "
            f"{result.queued_for_review} queued for review"
        )

    def _should_curate(self, mention: Mention) -> bool:
        if mention.type == MentionType.PERSON:
            return True
        return mention.type == MentionType.ORG and mention.extraction_confidence >= self.min_org_confidence

    async def _upsert_mention_node(self, item: ReviewQueueItem) -> bool:
        mention = item.mention
        node, created = await self.upserter.upsert_node(
            _NODE_TYPES[mention.type],
            mention.normalized_text,
            alt_names=[mention.raw_text],
            source_ids={"article_id": mention.source_article_id, "mention_id": mention.id},
            identity_id=item.identity_match.identity_id if item.identity_match else None,
        )
        self._mention_nodes[mention.id] = node.id
        return created

    async def _upsert_relation_edge(self, relation: RelationMention) -> bool:
        """Write the edge when both endpoints have nodes; returns True if created"""
        if not relation.is_resolved:
            return False

        src_id = self._mention_nodes.get(relation.subject_mention_id)
        dst_id = self._mention_nodes.get(relation.object_mention_id)
        if not src_id or not dst_id or src_id == dst_id:
            return False

        _, created = await self.upserter.upsert_edge(
            src_id,
            dst_id,
            relation.pattern.edge_type,
            weight=relation.confidence,
            evidence_ref={
                "article_id": relation.source_article_id,
                "relation_id": relation.id,
                "sentence": relation.sentence_text,
                "pattern": relation.pattern.value,
            },
        )
        return created

    async def _on_decision(self, item: ReviewQueueItem) -> None:
        """Late approvals: add the node and any edges that are now complete"""
        mention = item.mention
        if mention.type not in _NODE_TYPES:
            return

        if item.status == ReviewStatus.MERGED:
            primary_node_id = self._mention_nodes.get(item.merged_into or "")
            if not primary_node_id:
                logger.warning(f"Merged mention {mention.id} has no primary node yet")
                return
            primary = await self.curation.get(item.merged_into)
            await self.upserter.upsert_node(
                _NODE_TYPES[primary.mention.type],
                primary.mention.normalized_text,
                alt_names=[mention.raw_text],
            )
            self._mention_nodes[mention.id] = primary_node_id
        elif item.status.is_approving:
            await self._upsert_mention_node(item)
        else:
            return

        for relation in await self.relations.list_by_mention(mention.id):
            await self._upsert_relation_edge(relation)

    @staticmethod
    def _context_for(text: str, mention: Mention, window: int = 250) -> str:
        """Text around the mention, for the automated reviewer"""
        start = text.find(mention.raw_text)
        if start < 0:
            return text[:window * 2]
        return text[max(0, start - window):start + len(mention.raw_text) + window]
