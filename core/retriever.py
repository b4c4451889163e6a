# /core/retriever.py

from typing import Any, Dict, List, Optional

from core.config import settings
from core.database import GraphDBInterface
from core.embeddings import EmbeddingService
from core.logger import get_logger
from core.models import KnowledgeContext, RelatedNode, RelationshipCategory, RetrievedNode

logger = get_logger(__name__)

NO_MATCHES_MESSAGE = "No knowledge nodes match this query. The graph may need more content in this area."
LOW_CONFIDENCE_WARNING = "Low confidence results: the graph may not have strong coverage of this topic."

# Each category keeps its stance-like value under a different edge property.
STANCE_PROPERTY = {
    RelationshipCategory.CAUSAL: "direction",
    RelationshipCategory.EPISTEMIC: "stance",
    RelationshipCategory.CONTEXTUAL: "scope",
    RelationshipCategory.STRUCTURAL: "hierarchy",
}


def extract_stance(relationship_type: str, props: Dict[str, Any]) -> Optional[str]:
    try:
        category = RelationshipCategory(relationship_type)
    except ValueError:
        return None
    return props.get(STANCE_PROPERTY[category]) or None


def to_related_nodes(raw_related: List[Dict[str, Any]]) -> List[RelatedNode]:
    """Keeps the first edge seen for each neighbour."""
    seen = set()
    related = []
    for rel in raw_related or []:
        if not rel or not rel.get("id") or rel["id"] in seen:
            continue
        if rel.get("type") not in STANCE_PROPERTY:
            continue
        seen.add(rel["id"])
        props = rel.get("props") or {}
        related.append(RelatedNode(
            id=rel["id"],
            title=rel.get("title") or "",
            definition=rel.get("definition"),
            relationship_type=rel["type"],
            stance=extract_stance(rel["type"], props),
            mechanism=props.get("mechanism") or None,
        ))
    return related


def format_node(node: RetrievedNode) -> str:
    lines = [
        f"## {node.title} (score: {node.score:.2f})",
        node.definition,
        f"- Confidence: {node.confidence if node.confidence is not None else 'N/A'}",
        f"- Claim type: {node.claim_type or 'N/A'}",
    ]
    if node.related:
        lines.append("")
        lines.append("Related:")
        for rel in node.related:
            stance = f" {rel.stance}" if rel.stance else ""
            mechanism = f": {rel.mechanism}" if rel.mechanism else ""
            lines.append(f"- [{rel.relationship_type}{stance}] {rel.title}{mechanism}")
    return "\n".join(lines)


def format_results(hits: List[RetrievedNode], warnings: List[str],
                   budget_chars: Optional[int] = None) -> KnowledgeContext:
    """
    Serializes hits lowest score first so the strongest match ends up
    closest to the reader. When the blocks exceed the character budget the
    lowest-scored ones are dropped; the best block is always kept.
    """
    budget = settings.CONTEXT_BUDGET_CHARS if budget_chars is None else budget_chars
    hits = sorted(hits, key=lambda h: h.score, reverse=True)
    if not hits:
        return KnowledgeContext(hits=[], blocks=[], warnings=list(warnings), text=NO_MATCHES_MESSAGE)

    blocks: List[str] = []
    used = 0
    for hit in hits:
        block = format_node(hit)
        if blocks and used + len(block) > budget:
            break
        used += len(block)
        blocks.insert(0, block)

    parts = [f"WARNING: {w}" for w in warnings]
    if parts:
        parts.append("")
    parts.append("\n\n".join(blocks))
    return KnowledgeContext(hits=hits, blocks=blocks, warnings=list(warnings), text="\n".join(parts))


class KnowledgeRetriever:
    """Vector search over KnowledgeNodes plus one hop across the four relationship categories."""

    def __init__(self, db: GraphDBInterface, embedder: EmbeddingService,
                 budget_chars: Optional[int] = None, low_confidence_score: Optional[float] = None):
        self.db = db
        self.embedder = embedder
        self.budget_chars = budget_chars or settings.CONTEXT_BUDGET_CHARS
        self.low_confidence_score = (
            settings.LOW_CONFIDENCE_SCORE if low_confidence_score is None else low_confidence_score
        )

    def search(self, query: str, top_k: Optional[int] = None, domain_filter: Optional[str] = None):
        query_vector = self.embedder.embed_query(query)
        rows = self.db.vector_search_with_neighbors(
            query_vector, top_k or settings.RETRIEVAL_DEFAULT_TOP_K, domain_filter=domain_filter
        )
        hits = [
            RetrievedNode(
                id=row["id"],
                title=row.get("title") or "",
                definition=row.get("definition") or "",
                summary=row.get("summary") or "",
                confidence=row.get("confidence"),
                claim_type=row.get("claim_type"),
                score=row["score"],
                related=to_related_nodes(row.get("related")),
            )
            for row in rows
        ]
        warnings = []
        if hits and all(h.score < self.low_confidence_score for h in hits):
            warnings.append(LOW_CONFIDENCE_WARNING)
        return hits, warnings

    def query_knowledge(self, query: str, top_k: Optional[int] = None,
                        domain_filter: Optional[str] = None) -> KnowledgeContext:
        hits, warnings = self.search(query, top_k, domain_filter)
        context = format_results(hits, warnings, self.budget_chars)
        logger.info(
            "Knowledge query answered",
            extra={"hits": len(hits), "blocks": len(context.blocks), "domain_filter": domain_filter},
        )
        return context
