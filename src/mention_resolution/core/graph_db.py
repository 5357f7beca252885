"""
Graph stores for canonical nodes and typed edges
"""
import asyncio
import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
from uuid import uuid4

from neo4j import AsyncDriver, AsyncGraphDatabase

from src.mention_resolution.core.entities import EdgeType, GraphEdge, GraphNode, NodeType
from src.mention_resolution.core.exceptions import NotFoundError
from config.settings import settings

logger = logging.getLogger(__name__)


class InMemoryGraphStore:
    """
    Graph store backed by dicts keyed by the upsert keys; merges run under
    one asyncio lock
    """

    def __init__(self):
        self._nodes: Dict[str, GraphNode] = {}
        self._node_keys: Dict[Tuple[str, str], str] = {}
        self._edges: Dict[str, GraphEdge] = {}
        self._edge_keys: Dict[Tuple[str, str, str], str] = {}
        self._lock = asyncio.Lock()

    async def get_node(self, node_id: str) -> Optional[GraphNode]:
        return self._nodes.get(node_id)

    async def find_node(self, node_type: NodeType, canonical_name: str) -> Optional[GraphNode]:
        node_id = self._node_keys.get((node_type.value, canonical_name))
        return self._nodes.get(node_id) if node_id else None

    async def get_edge(self, edge_id: str) -> Optional[GraphEdge]:
        return self._edges.get(edge_id)

    async def find_edge(self, src_node_id: str, dst_node_id: str, edge_type: EdgeType) -> Optional[GraphEdge]:
        edge_id = self._edge_keys.get((src_node_id, dst_node_id, edge_type.value))
        return self._edges.get(edge_id) if edge_id else None

    async def list_nodes(self) -> List[GraphNode]:
        return list(self._nodes.values())

    async def list_edges(self) -> List[GraphEdge]:
        return list(self._edges.values())

    async def merge_node(
        self,
        node_type: NodeType,
        canonical_name: str,
        alt_names: List[str],
        source_ids: Dict[str, Any],
        identity_id: Optional[str]
    ) -> Tuple[GraphNode, bool]:
        """
        Create the node for (type, canonical_name) or merge into the existing one

        Returns:
            (node, created)
        """
        async with self._lock:
            node = await self.find_node(node_type, canonical_name)

            if node:
                for name in alt_names:
                    if name not in node.alt_names:
                        node.alt_names.append(name)
                node.source_ids.update(source_ids)
                if identity_id and not node.linked_identity_id:
                    node.linked_identity_id = identity_id
                node.last_updated = datetime.now()
                return node, False

            node = GraphNode(
                type=node_type,
                canonical_name=canonical_name,
                alt_names=list(alt_names),
                source_ids=dict(source_ids),
                linked_identity_id=identity_id,
            )
            self._nodes[node.id] = node
            self._node_keys[node.key] = node.id
            return node, True

    async def merge_edge(
        self,
        src_node_id: str,
        dst_node_id: str,
        edge_type: EdgeType,
        weight: Optional[float],
        evidence_ref: Optional[Dict[str, Any]]
    ) -> Tuple[GraphEdge, bool]:
        """
        Create the edge for (src, dst, type) or overwrite its weight/evidence

        Returns:
            (edge, created)

        Raises:
            NotFoundError: If an endpoint is missing when the edge must be created
        """
        async with self._lock:
            edge = await self.find_edge(src_node_id, dst_node_id, edge_type)

            if edge:
                if weight is not None:
                    edge.weight = weight
                if evidence_ref is not None:
                    edge.evidence_ref = dict(evidence_ref)
                edge.last_updated = datetime.now()
                return edge, False

            for node_id in (src_node_id, dst_node_id):
                if node_id not in self._nodes:
                    raise NotFoundError("Node", node_id, "Source or destination node not found")

            edge = GraphEdge(
                src_node_id=src_node_id,
                dst_node_id=dst_node_id,
                type=edge_type,
                weight=weight,
                evidence_ref=dict(evidence_ref or {}),
            )
            self._edges[edge.id] = edge
            self._edge_keys[edge.key] = edge.id
            return edge, True

    async def close(self) -> None:
        return None


class Neo4jGraphStore:
    """
    Neo4j graph store; node and edge keys are enforced with MERGE
    """

    MERGE_NODE_QUERY = """
    MERGE (n:MentionNode {type: $type, canonical_name: $canonical_name})
    ON CREATE SET
        n.id = $id,
        n.alt_names = [],
        n.source_ids = '{}',
        n.created_at = $now
    SET
        n.alt_names = n.alt_names + [name IN $alt_names WHERE NOT name IN n.alt_names],
        n.linked_identity_id = coalesce(n.linked_identity_id, $identity_id),
        n.last_updated = $now
    RETURN n, n.id = $id AS created
    """

    SET_SOURCE_IDS_QUERY = """
    MATCH (n:MentionNode {id: $id})
    SET n.source_ids = $source_ids
    RETURN n
    """

    MERGE_EDGE_QUERY = """
    MATCH (src:MentionNode {id: $src_id})
    MATCH (dst:MentionNode {id: $dst_id})
    MERGE (src)-[r:RELATED {type: $type}]->(dst)
    ON CREATE SET
        r.id = $id,
        r.created_at = $now
    SET
        r.weight = coalesce($weight, r.weight),
        r.evidence_ref = coalesce($evidence_ref, r.evidence_ref, '{}'),
        r.last_updated = $now
    RETURN r, src.id AS src_id, dst.id AS dst_id, r.id = $id AS created
    """

    def __init__(
        self,
        uri: Optional[str] = None,
        user: Optional[str] = None,
        password: Optional[str] = None,
        database: Optional[str] = None,
        driver: Optional[AsyncDriver] = None
    ):
        """
        Initialize Neo4j graph store

        Args:
            uri: Neo4j URI (defaults to settings)
            user: Neo4j username (defaults to settings)
            password: Neo4j password (defaults to settings)
            database: Neo4j database name (defaults to settings)
            driver: Pre-built async driver
        """
        self.uri = uri or settings.neo4j_uri
        self.user = user or settings.neo4j_user
        self.password = password or settings.neo4j_password
        self.database = database or settings.neo4j_database

        self.driver: AsyncDriver = driver or AsyncGraphDatabase.driver(
            self.uri,
            auth=(self.user, self.password)
        )

    async def verify(self) -> None:
        """Verify connectivity"""
        try:
            await self.driver.verify_connectivity()
            logger.info(f"Connected to Neo4j at {self.uri}")
        except Exception as e:
            logger.error(f"Failed to connect to Neo4j: {e}")
            raise

    async def ensure_constraints(self) -> None:
        """Create uniqueness constraints for node ids and node keys"""
        await self.execute_query(
            "CREATE CONSTRAINT mention_node_id IF NOT EXISTS "
            "FOR (n:MentionNode) REQUIRE n.id IS UNIQUE"
        )
        await self.execute_query(
            "CREATE CONSTRAINT mention_node_key IF NOT EXISTS "
            "FOR (n:MentionNode) REQUIRE (n.type, n.canonical_name) IS UNIQUE"
        )

    async def close(self) -> None:
        """Close Neo4j connection"""
        await self.driver.close()

    async def execute_query(
        self,
        query: str,
        parameters: Optional[Dict[str, Any]] = None
    ) -> List[Dict[str, Any]]:
        """
        Execute a Cypher query and return results

        Args:
            query: Cypher query string
            parameters: Query parameters

        Returns:
            List of result dictionaries
        """
        async with self.driver.session(database=self.database) as session:
            result = await session.run(query, parameters or {})
            return [dict(record) async for record in result]

    async def get_node(self, node_id: str) -> Optional[GraphNode]:
        results = await self.execute_query(
            "MATCH (n:MentionNode {id: $id}) RETURN n", {"id": node_id}
        )
        return self._record_to_node(results[0]["n"]) if results else None

    async def find_node(self, node_type: NodeType, canonical_name: str) -> Optional[GraphNode]:
        results = await self.execute_query(
            "MATCH (n:MentionNode {type: $type, canonical_name: $canonical_name}) RETURN n",
            {"type": node_type.value, "canonical_name": canonical_name},
        )
        return self._record_to_node(results[0]["n"]) if results else None

    async def get_edge(self, edge_id: str) -> Optional[GraphEdge]:
        results = await self.execute_query(
            """
            MATCH (src:MentionNode)-[r:RELATED {id: $id}]->(dst:MentionNode)
            RETURN r, src.id AS src_id, dst.id AS dst_id
            """,
            {"id": edge_id},
        )
        return self._record_to_edge(results[0]) if results else None

    async def find_edge(self, src_node_id: str, dst_node_id: str, edge_type: EdgeType) -> Optional[GraphEdge]:
        results = await self.execute_query(
            """
            MATCH (src:MentionNode {id: $src_id})-[r:RELATED {type: $type}]->(dst:MentionNode {id: $dst_id})
            RETURN r, src.id AS src_id, dst.id AS dst_id
            """,
            {"src_id": src_node_id, "dst_id": dst_node_id, "type": edge_type.value},
        )
        return self._record_to_edge(results[0]) if results else None

    async def list_nodes(self) -> List[GraphNode]:
        results = await self.execute_query("MATCH (n:MentionNode) RETURN n")
        return [self._record_to_node(r["n"]) for r in results]

    async def list_edges(self) -> List[GraphEdge]:
        results = await self.execute_query(
            "MATCH (src:MentionNode)-[r:RELATED]->(dst:MentionNode) "
            "RETURN r, src.id AS src_id, dst.id AS dst_id"
        )
        return [self._record_to_edge(r) for r in results]

    async def merge_node(
        self,
        node_type: NodeType,
        canonical_name: str,
        alt_names: List[str],
        source_ids: Dict[str, Any],
        identity_id: Optional[str]
    ) -> Tuple[GraphNode, bool]:
        """
        MERGE the node on (type, canonical_name) inside one write transaction

        Returns:
            (node, created)
        """
        params = {
            "id": str(uuid4()),
            "type": node_type.value,
            "canonical_name": canonical_name,
            "alt_names": list(alt_names),
            "identity_id": identity_id,
            "now": datetime.now().isoformat(),
        }

        async def work(tx):
            result = await tx.run(self.MERGE_NODE_QUERY, params)
            record = await result.single()
            node_data = record["n"]
            if source_ids:
                merged = json.loads(node_data.get("source_ids") or "{}")
                merged.update(source_ids)
                result = await tx.run(self.SET_SOURCE_IDS_QUERY, {
                    "id": node_data["id"],
                    "source_ids": json.dumps(merged, default=str),
                })
                node_data = (await result.single())["n"]
            return node_data, record["created"]

        async with self.driver.session(database=self.database) as session:
            node_data, created = await session.execute_write(work)

        return self._record_to_node(node_data), bool(created)

    async def merge_edge(
        self,
        src_node_id: str,
        dst_node_id: str,
        edge_type: EdgeType,
        weight: Optional[float],
        evidence_ref: Optional[Dict[str, Any]]
    ) -> Tuple[GraphEdge, bool]:
        """
        MERGE the edge on (src, dst, type)

        Returns:
            (edge, created)

        Raises:
            NotFoundError: If either endpoint is missing
        """
        results = await self.execute_query(self.MERGE_EDGE_QUERY, {
            "id": str(uuid4()),
            "src_id": src_node_id,
            "dst_id": dst_node_id,
            "type": edge_type.value,
            "weight": weight,
            "evidence_ref": json.dumps(evidence_ref, default=str) if evidence_ref is not None else None,
            "now": datetime.now().isoformat(),
        })

        if not results:
            raise NotFoundError("Node", f"{src_node_id}->{dst_node_id}", "Source or destination node not found")

        return self._record_to_edge(results[0]), bool(results[0]["created"])

    def _record_to_node(self, node_data: Any) -> GraphNode:
        """Convert Neo4j node data to GraphNode"""
        return GraphNode(
            id=node_data["id"],
            type=NodeType(node_data["type"]),
            canonical_name=node_data["canonical_name"],
            alt_names=list(node_data.get("alt_names") or []),
            source_ids=json.loads(node_data.get("source_ids") or "{}"),
            linked_identity_id=node_data.get("linked_identity_id"),
            created_at=_parse_time(node_data.get("created_at")),
            last_updated=_parse_time(node_data.get("last_updated")),
        )

    def _record_to_edge(self, record: Dict[str, Any]) -> GraphEdge:
        """Convert a (r, src_id, dst_id) record to GraphEdge"""
        rel = record["r"]
        return GraphEdge(
            id=rel["id"],
            src_node_id=record["src_id"],
            dst_node_id=record["dst_id"],
            type=EdgeType(rel["type"]),
            weight=rel.get("weight"),
            evidence_ref=json.loads(rel.get("evidence_ref") or "{}"),
            created_at=_parse_time(rel.get("created_at")),
            last_updated=_parse_time(rel.get("last_updated")),
        )

    async def __aenter__(self):
        """Context manager entry"""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit"""
        await self.close()


def _parse_time(value: Optional[str]) -> datetime:
    return datetime.fromisoformat(value) if value else datetime.now()
