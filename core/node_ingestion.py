# /core/node_ingestion.py

import hashlib
from typing import Callable, Dict, List, Optional

from core.database import GraphDBInterface
from core.entity_resolver import EntityResolver
from core.logger import get_logger
from core.models import ExtractedClaim, IngestResult, utc_now

logger = get_logger(__name__)


def generate_node_id(title: str, domain_slug: str) -> str:
    """Deterministic identity: same (title, domain) always yields the same id."""
    digest = hashlib.sha256(f"{title}\0{domain_slug}".encode("utf-8")).hexdigest()
    return digest[:36]


def embedding_text(claim: ExtractedClaim) -> str:
    return f"{claim.title}: {claim.definition}"


def ingest_nodes(
    db: GraphDBInterface,
    claims: List[ExtractedClaim],
    domain_slug: str,
    embed_fn: Callable[[str], List[float]],
    resolver: Optional[EntityResolver] = None,
    result: Optional[IngestResult] = None,
) -> IngestResult:
    """
    Upserts each claim as a KnowledgeNode and flags near-duplicates.

    For every claim the embedding of "title: definition" is computed, the
    node is merged on its deterministic id, and a same-domain similarity
    query decides whether to set ``potential_duplicate``. A missing domain
    skips the claim with a warning; ``node_ids`` keeps a None in its slot so
    it stays aligned with ``claims``.

    When the caller passes ``result`` it is filled in place, so the counts
    of nodes already written survive an exception raised part way through.
    """
    resolver = resolver or EntityResolver(db)
    result = result if result is not None else IngestResult()
    now = utc_now()

    for claim in claims:
        embedding = embed_fn(embedding_text(claim))
        node_id = generate_node_id(claim.title, domain_slug)

        was_created = db.upsert_knowledge_node(
            node_id,
            domain_slug,
            {
                "title": claim.title,
                "summary": claim.summary,
                "definition": claim.definition,
                "embedding": embedding,
                "confidence": claim.confidence,
                "claim_type": claim.claim_type,
                "evidence": [e.model_dump(exclude_none=True) for e in claim.evidence],
                "freshness_date": now,
            },
        )
        if was_created is None:
            result.node_ids.append(None)
            result.warnings.append(f"Domain '{domain_slug}' not found, skipped claim '{claim.title}'")
            continue

        result.node_ids.append(node_id)
        if was_created:
            result.nodes_created += 1
        else:
            result.nodes_merged += 1

        warning = resolver.flag_if_duplicate(node_id, claim.title, embedding, domain_slug)
        if warning:
            result.duplicates_found += 1
            result.warnings.append(warning)

    logger.info(
        "Nodes ingested",
        extra={
            "domain_slug": domain_slug,
            "nodes_created": result.nodes_created,
            "nodes_merged": result.nodes_merged,
            "duplicates_found": result.duplicates_found,
        },
    )
    return result


def build_node_id_map(claims: List[ExtractedClaim], node_ids: List[Optional[str]]) -> Dict[str, str]:
    return {claim.title: node_id for claim, node_id in zip(claims, node_ids) if node_id}
