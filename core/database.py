# /core/database.py

import json
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Tuple

from neo4j import GraphDatabase

from core.config import settings
from core.logger import get_logger
from core.models import RelationshipCategory

logger = get_logger(__name__)


class GraphDBInterface(ABC):
    """
    An abstract base class defining the narrow interface the synthesis and
    retrieval engines need from a graph-with-vector-index store.
    Records cross this boundary as plain dicts.
    """

    # --- Schema ---
    @abstractmethod
    def ensure_vector_index(self, index_name: str, node_label: str, property_name: str, dimensions: int):
        pass

    @abstractmethod
    def domain_exists(self, domain_slug: str) -> bool:
        pass

    # --- Knowledge nodes ---
    @abstractmethod
    def upsert_knowledge_node(self, node_id: str, domain_slug: str, properties: Dict[str, Any]) -> Optional[bool]:
        """Returns True when created, False when merged, None when the domain does not exist."""

    @abstractmethod
    def find_similar_nodes(self, embedding: List[float], top_k: int, domain_slug: str,
                           exclude_id: str, threshold: float) -> List[Dict[str, Any]]:
        """Neighbours in the same domain scoring strictly above ``threshold``, best first."""

    @abstractmethod
    def flag_potential_duplicate(self, node_id: str):
        pass

    @abstractmethod
    def get_knowledge_node(self, node_id: str) -> Optional[Dict[str, Any]]:
        """The node's properties without its embedding, or None."""

    @abstractmethod
    def list_knowledge_nodes(self, domain_slug: Optional[str], limit: int, offset: int) -> List[Dict[str, Any]]:
        """Nodes ordered by title, without embeddings."""

    @abstractmethod
    def update_knowledge_node(self, node_id: str, updates: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Sets only the given properties. Returns the updated node, or None if it does not exist."""

    @abstractmethod
    def find_node_id_by_title(self, title: str) -> Optional[str]:
        pass

    @abstractmethod
    def find_node_id_by_title_fragment(self, fragment: str) -> Optional[str]:
        """Case-insensitive substring match on node titles."""

    @abstractmethod
    def create_relationships(self, category: RelationshipCategory, rows: List[Dict[str, Any]]) -> int:
        pass

    @abstractmethod
    def vector_search_with_neighbors(self, embedding: List[float], top_k: int,
                                     domain_filter: Optional[str] = None) -> List[Dict[str, Any]]:
        """Top-k hits (score DESC), each with its raw one-hop neighbours across the four categories."""

    @abstractmethod
    def list_potential_duplicates(self, since: str, domain_slug: Optional[str] = None) -> List[Dict[str, Any]]:
        pass

    # --- Synthesis prompts and runs ---
    @abstractmethod
    def get_active_synthesis_prompt(self, master_domain: str) -> Optional[Dict[str, Any]]:
        pass

    @abstractmethod
    def create_synthesis_run(self, run: Dict[str, Any]):
        pass

    @abstractmethod
    def update_synthesis_run(self, run_id: str, updates: Dict[str, Any]):
        pass

    @abstractmethod
    def get_synthesis_run(self, run_id: str) -> Optional[Dict[str, Any]]:
        pass

    @abstractmethod
    def list_synthesis_runs(self, domain_slug: Optional[str], limit: int, offset: int) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    def link_prompt_to_run(self, prompt_id: str, run_id: str):
        pass

    # --- Research prompts ---
    @abstractmethod
    def create_research_prompt(self, prompt: Dict[str, Any]) -> str:
        """Creates the prompt unless one with the same title and domain exists; returns its id."""

    @abstractmethod
    def get_research_prompt(self, prompt_id: str) -> Optional[Dict[str, Any]]:
        pass

    @abstractmethod
    def update_research_prompt(self, prompt_id: str, updates: Dict[str, Any]):
        pass

    @abstractmethod
    def set_research_prompt_status(self, prompt_id: str, expected_status: str, status: str,
                                   updates: Dict[str, Any]) -> bool:
        """Compare-and-set: only writes when the stored status still equals ``expected_status``."""

    @abstractmethod
    def list_research_prompts(self, status: Optional[str] = None, domain_slug: Optional[str] = None,
                              source: Optional[str] = None, limit: int = 20, offset: int = 0) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    def next_ready_prompt(self) -> Tuple[Optional[Dict[str, Any]], int]:
        """Highest-priority ready_for_research prompt and the total number of ready prompts."""

    @abstractmethod
    def count_prompts_by_status(self) -> Dict[str, int]:
        pass

    @abstractmethod
    def count_prompts_by_domain_and_status(self) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    def close(self):
        pass


# Neo4j cannot take a relationship type as a parameter, so each category has
# its own statically written batch statement.
RELATIONSHIP_WRITE_QUERIES = {
    RelationshipCategory.CAUSAL: """
    UNWIND $rels AS rel
    MATCH (source:KnowledgeNode {id: rel.source_id})
    MATCH (target:KnowledgeNode {id: rel.target_id})
    CREATE (source)-[r:CAUSAL]->(target)
    SET r += rel.props
    RETURN count(r) AS created
    """,
    RelationshipCategory.EPISTEMIC: """
    UNWIND $rels AS rel
    MATCH (source:KnowledgeNode {id: rel.source_id})
    MATCH (target:KnowledgeNode {id: rel.target_id})
    CREATE (source)-[r:EPISTEMIC]->(target)
    SET r += rel.props
    RETURN count(r) AS created
    """,
    RelationshipCategory.CONTEXTUAL: """
    UNWIND $rels AS rel
    MATCH (source:KnowledgeNode {id: rel.source_id})
    MATCH (target:KnowledgeNode {id: rel.target_id})
    CREATE (source)-[r:CONTEXTUAL]->(target)
    SET r += rel.props
    RETURN count(r) AS created
    """,
    RelationshipCategory.STRUCTURAL: """
    UNWIND $rels AS rel
    MATCH (source:KnowledgeNode {id: rel.source_id})
    MATCH (target:KnowledgeNode {id: rel.target_id})
    CREATE (source)-[r:STRUCTURAL]->(target)
    SET r += rel.props
    RETURN count(r) AS created
    """,
}


def _decode_json_list(value) -> list:
    if not value:
        return []
    if isinstance(value, list):
        return value
    try:
        decoded = json.loads(value)
    except (TypeError, ValueError):
        logger.warning("Discarding undecodable JSON property", extra={"value": str(value)[:200]})
        return []
    return decoded if isinstance(decoded, list) else []


# Neo4j properties cannot hold maps or lists of maps, so these are stored as JSON strings.
NODE_JSON_PROPERTIES = ("evidence", "extensions")


def _decode_node(props: Dict[str, Any]) -> Dict[str, Any]:
    node = {k: v for k, v in props.items() if k != "embedding"}
    node["evidence"] = _decode_json_list(node.get("evidence"))
    extensions = node.get("extensions")
    if isinstance(extensions, str):
        try:
            extensions = json.loads(extensions)
        except ValueError:
            logger.warning("Discarding undecodable node extensions", extra={"node_id": node.get("id")})
            extensions = None
    node["extensions"] = extensions if isinstance(extensions, dict) else {}
    return node


def create_driver():
    """A Neo4j driver (and its connection pool) from settings."""
    uri = settings.NEO4J_URI
    user = settings.NEO4J_USERNAME
    password = settings.NEO4J_PASSWORD
    if not all([uri, user, password]):
        raise ValueError("Neo4j credentials not found in environment or .env file.")
    return GraphDatabase.driver(uri, auth=(user, password))


class Neo4jDatabase(GraphDBInterface):
    """Concrete implementation of the GraphDBInterface for Neo4j 5 with native vector indexes."""

    def __init__(self, driver=None, database: Optional[str] = None, index_name: Optional[str] = None):
        self._driver = driver if driver is not None else create_driver()
        self._database = database or settings.NEO4J_DATABASE
        self._index_name = index_name or settings.VECTOR_INDEX_NAME

    @contextmanager
    def _session(self) -> Iterator[Any]:
        # One session per operation; the with-block releases it on every exit path.
        with self._driver.session(database=self._database) as session:
            yield session

    def _read(self, query: str, **params) -> List[Dict[str, Any]]:
        with self._session() as session:
            return session.execute_read(lambda tx: tx.run(query, params).data())

    def _write(self, query: str, **params) -> List[Dict[str, Any]]:
        with self._session() as session:
            return session.execute_write(lambda tx: tx.run(query, params).data())

    # --- Schema ---

    def ensure_vector_index(self, index_name: str, node_label: str, property_name: str, dimensions: int):
        with self._session() as session:
            session.run(f"""
            CREATE VECTOR INDEX `{index_name}` IF NOT EXISTS
            FOR (n:{node_label}) ON (n.{property_name})
            OPTIONS {{ indexConfig: {{
                `vector.dimensions`: {int(dimensions)},
                `vector.similarity_function`: 'cosine'
            }}}}
            """)
            session.run(
                "CREATE CONSTRAINT knowledge_node_id IF NOT EXISTS "
                "FOR (n:KnowledgeNode) REQUIRE n.id IS UNIQUE"
            )
        logger.info("Neo4j vector index ensured", extra={"index_name": index_name, "dimensions": dimensions})

    def domain_exists(self, domain_slug: str) -> bool:
        rows = self._read("MATCH (d:Domain {slug: $slug}) RETURN d.slug AS slug LIMIT 1", slug=domain_slug)
        return bool(rows)

    # --- Knowledge nodes ---

    def upsert_knowledge_node(self, node_id: str, domain_slug: str, properties: Dict[str, Any]) -> Optional[bool]:
        query = """
        MATCH (d:Domain {slug: $domain_slug})
        MERGE (n:KnowledgeNode {id: $id})
        ON CREATE SET
            n.title = $title,
            n.domain_slug = $domain_slug,
            n.status = 'active',
            n.potential_duplicate = false,
            n.created_at = $now,
            n._just_created = true
        ON MATCH SET
            n._just_created = false
        SET n.summary = $summary,
            n.definition = $definition,
            n.embedding = $embedding,
            n.confidence = $confidence,
            n.claim_type = $claim_type,
            n.evidence = $evidence,
            n.freshness_date = $now
        MERGE (n)-[:BELONGS_TO]->(d)
        WITH n, n._just_created AS was_created
        REMOVE n._just_created
        RETURN n.id AS node_id, was_created
        """
        rows = self._write(
            query,
            id=node_id,
            domain_slug=domain_slug,
            title=properties["title"],
            summary=properties["summary"],
            definition=properties["definition"],
            embedding=properties["embedding"],
            confidence=properties["confidence"],
            claim_type=properties["claim_type"],
            evidence=json.dumps(properties.get("evidence", [])),
            now=properties["freshness_date"],
        )
        if not rows:
            return None
        return bool(rows[0]["was_created"])

    def find_similar_nodes(self, embedding: List[float], top_k: int, domain_slug: str,
                           exclude_id: str, threshold: float) -> List[Dict[str, Any]]:
        query = """
        CALL db.index.vector.queryNodes($index_name, $top_k, $embedding)
        YIELD node, score
        WHERE score > $threshold AND node.id <> $exclude_id
          AND EXISTS { (node)-[:BELONGS_TO]->(:Domain {slug: $domain_slug}) }
        RETURN node.id AS id, node.title AS title, score
        ORDER BY score DESC
        """
        return self._read(
            query,
            index_name=self._index_name,
            top_k=top_k,
            embedding=embedding,
            threshold=threshold,
            exclude_id=exclude_id,
            domain_slug=domain_slug,
        )

    def flag_potential_duplicate(self, node_id: str):
        self._write("MATCH (n:KnowledgeNode {id: $id}) SET n.potential_duplicate = true", id=node_id)

    def get_knowledge_node(self, node_id: str) -> Optional[Dict[str, Any]]:
        rows = self._read(
            "MATCH (n:KnowledgeNode {id: $id}) RETURN properties(n) AS node",
            id=node_id,
        )
        return _decode_node(rows[0]["node"]) if rows else None

    def list_knowledge_nodes(self, domain_slug: Optional[str], limit: int, offset: int) -> List[Dict[str, Any]]:
        domain_clause = "-[:BELONGS_TO]->(:Domain {slug: $domain_slug})" if domain_slug else ""
        rows = self._read(
            f"""
            MATCH (n:KnowledgeNode){domain_clause}
            RETURN properties(n) AS node
            ORDER BY n.title
            SKIP $offset LIMIT $limit
            """,
            domain_slug=domain_slug,
            offset=offset,
            limit=limit,
        )
        return [_decode_node(row["node"]) for row in rows]

    def update_knowledge_node(self, node_id: str, updates: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        encoded = dict(updates)
        for key in NODE_JSON_PROPERTIES:
            if key in encoded:
                encoded[key] = json.dumps(encoded[key])
        rows = self._write(
            """
            MATCH (n:KnowledgeNode {id: $id})
            SET n += $updates
            RETURN properties(n) AS node
            """,
            id=node_id,
            updates=encoded,
        )
        return _decode_node(rows[0]["node"]) if rows else None

    def find_node_id_by_title(self, title: str) -> Optional[str]:
        rows = self._read(
            "MATCH (n:KnowledgeNode {title: $title}) RETURN n.id AS node_id LIMIT 1",
            title=title,
        )
        return rows[0]["node_id"] if rows else None

    def find_node_id_by_title_fragment(self, fragment: str) -> Optional[str]:
        rows = self._read(
            """
            MATCH (n:KnowledgeNode)
            WHERE toLower(n.title) CONTAINS toLower($fragment)
            RETURN n.id AS node_id
            LIMIT 1
            """,
            fragment=fragment,
        )
        return rows[0]["node_id"] if rows else None

    def create_relationships(self, category: RelationshipCategory, rows: List[Dict[str, Any]]) -> int:
        if not rows:
            return 0
        query = RELATIONSHIP_WRITE_QUERIES[RelationshipCategory(category)]
        result = self._write(query, rels=rows)
        return int(result[0]["created"]) if result else 0

    def vector_search_with_neighbors(self, embedding: List[float], top_k: int,
                                     domain_filter: Optional[str] = None) -> List[Dict[str, Any]]:
        domain_clause = (
            "WHERE EXISTS { (node)-[:BELONGS_TO]->(:Domain {slug: $domain_filter}) }"
            if domain_filter else ""
        )
        query = f"""
        CALL db.index.vector.queryNodes($index_name, $top_k, $embedding)
        YIELD node, score
        {domain_clause}
        OPTIONAL MATCH (node)-[r]-(related:KnowledgeNode)
        WHERE type(r) IN ['CAUSAL', 'EPISTEMIC', 'CONTEXTUAL', 'STRUCTURAL']
        WITH node, score, collect(CASE WHEN related IS NULL THEN null ELSE {{
            id: related.id,
            title: related.title,
            definition: related.definition,
            type: type(r),
            props: properties(r)
        }} END) AS related
        RETURN node.id AS id, node.title AS title, node.definition AS definition,
               node.summary AS summary, node.confidence AS confidence,
               node.claim_type AS claim_type, score, related
        ORDER BY score DESC
        """
        params = {"index_name": self._index_name, "top_k": top_k, "embedding": embedding}
        if domain_filter:
            params["domain_filter"] = domain_filter
        return self._read(query, **params)

    def list_potential_duplicates(self, since: str, domain_slug: Optional[str] = None) -> List[Dict[str, Any]]:
        domain_clause = "AND n.domain_slug = $domain_slug" if domain_slug else ""
        return self._read(
            f"""
            MATCH (n:KnowledgeNode {{potential_duplicate: true}})
            WHERE n.freshness_date >= $since {domain_clause}
            RETURN n.id AS node_id, n.title AS title
            ORDER BY n.title
            """,
            since=since,
            domain_slug=domain_slug,
        )

    # --- Synthesis prompts and runs ---

    def get_active_synthesis_prompt(self, master_domain: str) -> Optional[Dict[str, Any]]:
        rows = self._read(
            """
            MATCH (sp:SynthesisPrompt {status: 'active', master_domain: $master_domain})
            RETURN properties(sp) AS prompt
            ORDER BY sp.version DESC
            LIMIT 1
            """,
            master_domain=master_domain,
        )
        return rows[0]["prompt"] if rows else None

    def create_synthesis_run(self, run: Dict[str, Any]):
        props = dict(run)
        props["errors"] = json.dumps(props.get("errors", []))
        self._write("CREATE (sr:SynthesisRun) SET sr = $props", props=props)

    def update_synthesis_run(self, run_id: str, updates: Dict[str, Any]):
        if not updates:
            return
        props = dict(updates)
        if "errors" in props:
            props["errors"] = json.dumps(props["errors"])
        self._write("MATCH (sr:SynthesisRun {id: $id}) SET sr += $props", id=run_id, props=props)

    def get_synthesis_run(self, run_id: str) -> Optional[Dict[str, Any]]:
        rows = self._read("MATCH (sr:SynthesisRun {id: $id}) RETURN properties(sr) AS run", id=run_id)
        if not rows:
            return None
        run = dict(rows[0]["run"])
        run["errors"] = _decode_json_list(run.get("errors"))
        return run

    def list_synthesis_runs(self, domain_slug: Optional[str], limit: int, offset: int) -> List[Dict[str, Any]]:
        where = "WHERE sr.domain_slug = $domain_slug" if domain_slug else ""
        rows = self._read(
            f"""
            MATCH (sr:SynthesisRun)
            {where}
            RETURN properties(sr) AS run
            ORDER BY sr.created_at DESC
            SKIP $offset
            LIMIT $limit
            """,
            domain_slug=domain_slug,
            limit=limit,
            offset=offset,
        )
        runs = []
        for row in rows:
            run = dict(row["run"])
            run["errors"] = _decode_json_list(run.get("errors"))
            runs.append(run)
        return runs

    def link_prompt_to_run(self, prompt_id: str, run_id: str):
        self._write(
            """
            MATCH (rp:ResearchPrompt {id: $prompt_id})
            MATCH (sr:SynthesisRun {id: $run_id})
            MERGE (rp)-[:PRODUCED]->(sr)
            """,
            prompt_id=prompt_id,
            run_id=run_id,
        )

    # --- Research prompts ---

    def create_research_prompt(self, prompt: Dict[str, Any]) -> str:
        props = {k: v for k, v in prompt.items() if k not in ("title", "domain_slug")}
        rows = self._write(
            """
            MERGE (rp:ResearchPrompt {title: $title, domain_slug: $domain_slug})
            ON CREATE SET rp += $props
            WITH rp
            OPTIONAL MATCH (d:Domain {slug: $domain_slug})
            FOREACH (_ IN CASE WHEN d IS NOT NULL THEN [1] ELSE [] END |
                MERGE (rp)-[:TARGETS]->(d)
            )
            RETURN rp.id AS id
            """,
            title=prompt["title"],
            domain_slug=prompt["domain_slug"],
            props=props,
        )
        return rows[0]["id"]

    def get_research_prompt(self, prompt_id: str) -> Optional[Dict[str, Any]]:
        rows = self._read("MATCH (rp:ResearchPrompt {id: $id}) RETURN properties(rp) AS prompt", id=prompt_id)
        return rows[0]["prompt"] if rows else None

    def update_research_prompt(self, prompt_id: str, updates: Dict[str, Any]):
        if not updates:
            return
        self._write("MATCH (rp:ResearchPrompt {id: $id}) SET rp += $props", id=prompt_id, props=updates)

    def set_research_prompt_status(self, prompt_id: str, expected_status: str, status: str,
                                   updates: Dict[str, Any]) -> bool:
        rows = self._write(
            """
            MATCH (rp:ResearchPrompt {id: $id})
            WHERE rp.status = $expected_status
            SET rp += $props, rp.status = $status
            RETURN rp.id AS id
            """,
            id=prompt_id,
            expected_status=expected_status,
            status=status,
            props=updates,
        )
        return bool(rows)

    def list_research_prompts(self, status: Optional[str] = None, domain_slug: Optional[str] = None,
                              source: Optional[str] = None, limit: int = 20, offset: int = 0) -> List[Dict[str, Any]]:
        clauses = []
        if status:
            clauses.append("rp.status = $status")
        if domain_slug:
            clauses.append("rp.domain_slug = $domain_slug")
        if source:
            clauses.append("rp.source = $source")
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self._read(
            f"""
            MATCH (rp:ResearchPrompt)
            {where}
            RETURN properties(rp) AS prompt
            ORDER BY rp.priority DESC, rp.created_date ASC, rp.id ASC
            SKIP $offset
            LIMIT $limit
            """,
            status=status,
            domain_slug=domain_slug,
            source=source,
            limit=limit,
            offset=offset,
        )
        return [row["prompt"] for row in rows]

    def next_ready_prompt(self) -> Tuple[Optional[Dict[str, Any]], int]:
        rows = self._read(
            """
            MATCH (rp:ResearchPrompt {status: 'ready_for_research'})
            WITH rp ORDER BY rp.priority DESC, rp.created_date ASC, rp.id ASC
            WITH collect(properties(rp)) AS ready
            RETURN size(ready) AS total,
                   CASE WHEN size(ready) > 0 THEN ready[0] ELSE null END AS next
            """
        )
        if not rows:
            return None, 0
        return rows[0]["next"], int(rows[0]["total"])

    def count_prompts_by_status(self) -> Dict[str, int]:
        rows = self._read("MATCH (rp:ResearchPrompt) RETURN rp.status AS status, count(rp) AS count")
        return {row["status"]: int(row["count"]) for row in rows}

    def count_prompts_by_domain_and_status(self) -> List[Dict[str, Any]]:
        return self._read(
            """
            MATCH (rp:ResearchPrompt)
            RETURN rp.domain_slug AS domain_slug, rp.status AS status, count(rp) AS count
            ORDER BY domain_slug, status
            """
        )

    def close(self):
        self._driver.close()
