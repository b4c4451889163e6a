# /core/knowledge_nodes.py

from typing import Any, Dict, List, Optional, Union

from pydantic import ValidationError

from core.database import GraphDBInterface
from core.embeddings import EmbeddingService
from core.entity_resolver import EntityResolver
from core.errors import DomainNotFoundError, NodeNotFoundError, NodeValidationError
from core.logger import get_logger
from core.models import KnowledgeNode, KnowledgeNodeCreate, KnowledgeNodeUpdate, utc_now
from core.node_ingestion import embedding_text, generate_node_id

logger = get_logger(__name__)

# Changing either of these changes the embedded text, so the vector is recomputed.
EMBEDDED_FIELDS = ("title", "definition")
SCOPE_FIELDS = ("conditions", "temporal_range", "geographic_scope")


def _validated(model, data):
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise NodeValidationError(str(e)) from e


class KnowledgeNodeService:
    """
    Manual curation of knowledge nodes: listing, creating a node outside a
    synthesis run, and patching an existing one. Nodes keep the identity they
    were created with; a title edit does not move the node to a new id.
    """

    def __init__(self, db: GraphDBInterface, embedder: EmbeddingService, resolver: Optional[EntityResolver] = None):
        self.db = db
        self.embedder = embedder
        self.resolver = resolver or EntityResolver(db)

    def get_node(self, node_id: str) -> KnowledgeNode:
        record = self.db.get_knowledge_node(node_id)
        if record is None:
            raise NodeNotFoundError(node_id)
        return KnowledgeNode.model_validate(record)

    def list_nodes(self, domain_slug: Optional[str] = None, limit: int = 20, offset: int = 0) -> List[KnowledgeNode]:
        records = self.db.list_knowledge_nodes(domain_slug, limit, offset)
        return [KnowledgeNode.model_validate(r) for r in records]

    def create_node(self, data: Union[KnowledgeNodeCreate, Dict[str, Any]]) -> KnowledgeNode:
        """
        Embeds and writes the node under its deterministic id. Creating a
        node whose title already exists in the domain overwrites that node's
        content, as a synthesis pass would.
        """
        node = _validated(KnowledgeNodeCreate, data)
        if not self.db.domain_exists(node.domain_slug):
            raise DomainNotFoundError(node.domain_slug)

        node_id = generate_node_id(node.title, node.domain_slug)
        embedding = self.embedder.embed_for_storage(embedding_text(node))
        was_created = self.db.upsert_knowledge_node(
            node_id,
            node.domain_slug,
            {
                "title": node.title,
                "summary": node.summary,
                "definition": node.definition,
                "embedding": embedding,
                "confidence": node.confidence,
                "claim_type": node.claim_type,
                "evidence": [e.model_dump(exclude_none=True) for e in node.evidence],
                "freshness_date": utc_now(),
            },
        )
        if was_created is None:
            raise DomainNotFoundError(node.domain_slug)

        extras: Dict[str, Any] = {f: getattr(node, f) for f in SCOPE_FIELDS if getattr(node, f) is not None}
        if node.extensions:
            extras["extensions"] = node.extensions
        if extras:
            self.db.update_knowledge_node(node_id, extras)

        warning = self.resolver.flag_if_duplicate(node_id, node.title, embedding, node.domain_slug)
        if warning:
            logger.warning(warning, extra={"node_id": node_id})

        logger.info(
            "Knowledge node written",
            extra={"node_id": node_id, "domain_slug": node.domain_slug, "was_created": was_created},
        )
        return self.get_node(node_id)

    def update_node(self, node_id: str, data: Union[KnowledgeNodeUpdate, Dict[str, Any]]) -> KnowledgeNode:
        """
        PATCH semantics: only the supplied fields are written. The node is
        re-embedded, and re-checked for near-duplicates, only when its title
        or definition actually changes.
        """
        patch = _validated(KnowledgeNodeUpdate, data)
        updates = patch.model_dump(mode="json", exclude_none=True)
        if not updates:
            raise NodeValidationError("Nothing to update")

        existing = self.get_node(node_id)
        embedding = None
        if any(f in updates and updates[f] != getattr(existing, f) for f in EMBEDDED_FIELDS):
            merged = existing.model_copy(update={f: updates.get(f, getattr(existing, f)) for f in EMBEDDED_FIELDS})
            embedding = self.embedder.embed_for_storage(embedding_text(merged))
            updates["embedding"] = embedding
        updates["freshness_date"] = utc_now()

        if self.db.update_knowledge_node(node_id, updates) is None:
            raise NodeNotFoundError(node_id)

        if embedding is not None:
            warning = self.resolver.flag_if_duplicate(
                node_id, updates.get("title", existing.title), embedding, existing.domain_slug
            )
            if warning:
                logger.warning(warning, extra={"node_id": node_id})

        logger.info(
            "Knowledge node updated",
            extra={"node_id": node_id, "fields": sorted(updates), "re_embedded": embedding is not None},
        )
        return self.get_node(node_id)
