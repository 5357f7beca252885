"""
Tests for graph upserts
"""
import pytest
from src.mention_resolution.core.entities import EdgeType, NodeType
from src.mention_resolution.core.exceptions import NotFoundError
from src.mention_resolution.core.graph_db import InMemoryGraphStore
from src.mention_resolution.core.graph_upserter import GraphUpserter, sanitize_alt_names


def test_sanitize_alt_names():
    assert sanitize_alt_names(None) == []
    assert sanitize_alt_names("Juan Pérez") == ["Juan Pérez"]
    assert sanitize_alt_names([" Juan ", "", "Juan", "  "]) == ["Juan"]


class TestGraphUpserter:
    """Test cases for GraphUpserter"""

    def setup_method(self):
        """Setup test fixtures"""
        self.store = InMemoryGraphStore()
        self.upserter = GraphUpserter(self.store)

    @pytest.mark.asyncio
    async def test_create_node(self):
        node, created = await self.upserter.upsert_node(
            NodeType.PERSON, "Juan Pérez", alt_names=["Juan Pérez"], source_ids={"article_id": "a1"}
        )

        assert created
        assert node.canonical_name == "JUAN PEREZ"
        assert node.alt_names == ["Juan Pérez"]
        assert node.source_ids == {"article_id": "a1"}

    @pytest.mark.asyncio
    async def test_merge_node_unions_alt_names(self):
        first, _ = await self.upserter.upsert_node(
            NodeType.PERSON, "Juan Pérez", alt_names=["Juan Pérez"], source_ids={"article_id": "a1"}
        )
        second, created = await self.upserter.upsert_node(
            NodeType.PERSON, "JUAN PEREZ", alt_names=["Juan Perez", "Juan Pérez"],
            source_ids={"article_id": "a2", "mention_id": "m2"},
        )

        assert not created
        assert second.id == first.id
        assert second.alt_names == ["Juan Pérez", "Juan Perez"]
        assert second.source_ids == {"article_id": "a2", "mention_id": "m2"}
        assert len(await self.store.list_nodes()) == 1

    @pytest.mark.asyncio
    async def test_node_key_includes_type(self):
        person, _ = await self.upserter.upsert_node(NodeType.PERSON, "Delta")
        org, created = await self.upserter.upsert_node(NodeType.ORG, "Delta")

        assert created
        assert person.id != org.id

    @pytest.mark.asyncio
    async def test_identity_link_is_only_backfilled(self):
        await self.upserter.upsert_node(NodeType.PERSON, "Nicolas Maduro")
        node, _ = await self.upserter.upsert_node(NodeType.PERSON, "Nicolas Maduro", identity_id="ofac-1")
        assert node.linked_identity_id == "ofac-1"

        node, _ = await self.upserter.upsert_node(NodeType.PERSON, "Nicolas Maduro", identity_id="other")
        assert node.linked_identity_id == "ofac-1"

    @pytest.mark.asyncio
    async def test_blank_name_rejected(self):
        with pytest.raises(ValueError):
            await self.upserter.upsert_node(NodeType.PERSON, "   ")

    @pytest.mark.asyncio
    async def test_upsert_edge(self):
        src, _ = await self.upserter.upsert_node(NodeType.PERSON, "Juan Pérez")
        dst, _ = await self.upserter.upsert_node(NodeType.PERSON, "Nicolás Maduro")

        edge, created = await self.upserter.upsert_edge(
            src.id, dst.id, EdgeType.FRONT_MAN_OF, weight=0.85, evidence_ref={"article_id": "a1"}
        )
        again, created_again = await self.upserter.upsert_edge(
            src.id, dst.id, EdgeType.FRONT_MAN_OF, weight=0.9
        )

        assert created
        assert not created_again
        assert again.id == edge.id
        assert again.weight == 0.9
        assert again.evidence_ref == {"article_id": "a1"}
        assert len(await self.store.list_edges()) == 1

    @pytest.mark.asyncio
    async def test_edge_type_is_part_of_key(self):
        src, _ = await self.upserter.upsert_node(NodeType.PERSON, "Juan Pérez")
        dst, _ = await self.upserter.upsert_node(NodeType.ORG, "Petro Holdings S.A.")

        await self.upserter.upsert_edge(src.id, dst.id, EdgeType.OFFICER_OF, weight=0.8)
        _, created = await self.upserter.upsert_edge(src.id, dst.id, EdgeType.BENEFICIAL_OWNER_OF, weight=0.8)

        assert created
        assert len(await self.store.list_edges()) == 2

    @pytest.mark.asyncio
    async def test_edge_between_unknown_nodes_fails(self):
        src, _ = await self.upserter.upsert_node(NodeType.PERSON, "Juan Pérez")

        with pytest.raises(NotFoundError):
            await self.upserter.upsert_edge(src.id, "missing", EdgeType.FRONT_MAN_OF, weight=0.85)

        assert await self.store.list_edges() == []
        assert len(await self.store.list_nodes()) == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("weight", [-0.1, 1.5])
    async def test_edge_weight_range(self, weight):
        src, _ = await self.upserter.upsert_node(NodeType.PERSON, "Juan Pérez")
        dst, _ = await self.upserter.upsert_node(NodeType.PERSON, "Nicolás Maduro")

        with pytest.raises(ValueError):
            await self.upserter.upsert_edge(src.id, dst.id, EdgeType.FRONT_MAN_OF, weight=weight)
