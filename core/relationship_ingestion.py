# /core/relationship_ingestion.py

from typing import Any, Dict, List, Optional

from core.database import GraphDBInterface
from core.logger import get_logger
from core.models import (
    CATEGORY_VOCABULARY,
    ExtractedClaim,
    ExtractedRelationship,
    RelationshipCategory,
    RelIngestResult,
    utc_now,
)

logger = get_logger(__name__)


def _causal_props(rel: ExtractedRelationship) -> Dict[str, Any]:
    return {"direction": rel.stance, "mechanism": rel.mechanism or "", "confidence": rel.strength}


def _epistemic_props(rel: ExtractedRelationship) -> Dict[str, Any]:
    return {"confidence": rel.strength}


def _contextual_props(rel: ExtractedRelationship) -> Dict[str, Any]:
    return {"scope": rel.stance, "conditions": rel.conditions or ""}


def _structural_props(rel: ExtractedRelationship) -> Dict[str, Any]:
    return {"hierarchy": rel.stance}


CATEGORY_PROPERTIES = {
    RelationshipCategory.CAUSAL: _causal_props,
    RelationshipCategory.EPISTEMIC: _epistemic_props,
    RelationshipCategory.CONTEXTUAL: _contextual_props,
    RelationshipCategory.STRUCTURAL: _structural_props,
}


def relationship_row(category: RelationshipCategory, source_id: str, target_id: str,
                     rel: ExtractedRelationship, created_at: str) -> Dict[str, Any]:
    props = {
        "type": rel.type,
        "stance": rel.stance,
        "strength": rel.strength,
        "source": "synthesis",
        "created_at": created_at,
    }
    props.update(CATEGORY_PROPERTIES[category](rel))
    return {"source_id": source_id, "target_id": target_id, "props": props}


def resolve_target_node(db: GraphDBInterface, target_title: str, node_id_map: Dict[str, str]) -> Optional[str]:
    """Batch map first, then exact title in the graph, then case-insensitive substring."""
    direct = node_id_map.get(target_title)
    if direct:
        return direct
    exact = db.find_node_id_by_title(target_title)
    if exact:
        return exact
    return db.find_node_id_by_title_fragment(target_title)


def ingest_relationships(
    db: GraphDBInterface,
    claims: List[ExtractedClaim],
    node_id_map: Dict[str, str],
) -> RelIngestResult:
    """
    Resolves every relationship intent to a target node and writes them as
    one batch statement per category. Unresolvable targets are skipped with
    a warning and never abort their siblings.
    """
    result = RelIngestResult()
    grouped: Dict[RelationshipCategory, List[Dict[str, Any]]] = {c: [] for c in RelationshipCategory}
    created_at = utc_now()

    for claim in claims:
        source_id = node_id_map.get(claim.title)
        if not source_id:
            if claim.relationships:
                result.relationships_skipped += len(claim.relationships)
                result.warnings.append(
                    f"Source node for '{claim.title}' was not ingested; "
                    f"skipped {len(claim.relationships)} relationship(s)"
                )
            continue

        for rel in claim.relationships:
            try:
                category = RelationshipCategory(rel.category.upper())
            except ValueError:
                result.relationships_skipped += 1
                result.warnings.append(f"Unknown relationship category '{rel.category}' on '{claim.title}'")
                continue

            target_id = resolve_target_node(db, rel.target_title, node_id_map)
            if not target_id:
                result.relationships_skipped += 1
                result.warnings.append(
                    f"Target node not found for relationship: '{rel.target_title}' "
                    f"(category: {category.value}, source ID: {source_id})"
                )
                continue
            if target_id == source_id:
                result.relationships_skipped += 1
                result.warnings.append(f"Self-referencing relationship on '{claim.title}' skipped")
                continue

            if rel.stance not in CATEGORY_VOCABULARY[category]:
                result.warnings.append(
                    f"Relationship '{claim.title}' -> '{rel.target_title}' uses stance '{rel.stance}' "
                    f"outside the {category.value} vocabulary"
                )
            grouped[category].append(relationship_row(category, source_id, target_id, rel, created_at))

    for category in RelationshipCategory:
        rows = grouped[category]
        if not rows:
            continue
        result.relationships_created += db.create_relationships(category, rows)

    logger.info(
        "Relationships ingested",
        extra={"relationships_created": result.relationships_created, "relationships_skipped": result.relationships_skipped},
    )
    return result
