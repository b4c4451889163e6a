from typing import List, Dict, Any

from core.config import settings
from core.database import GraphDBInterface # Import the interface
from core.logger import get_logger

logger = get_logger(__name__)


class EntityResolver:
    """
    Flags near-duplicate knowledge nodes. Exact duplicates never reach this
    point because node identity is deterministic; this catches claims that
    are worded differently but embed almost identically.
    """

    def __init__(self, db_client: GraphDBInterface, similarity_threshold: float | None = None,
                 top_k: int | None = None):
        self.db_client = db_client
        self.similarity_threshold = (
            settings.DUPLICATE_SIMILARITY_THRESHOLD if similarity_threshold is None else similarity_threshold
        )
        self.top_k = top_k or settings.DUPLICATE_QUERY_TOP_K

    def find_near_duplicates(self, node_id: str, embedding: List[float], domain_slug: str) -> List[Dict[str, Any]]:
        return self.db_client.find_similar_nodes(
            embedding=embedding,
            top_k=self.top_k,
            domain_slug=domain_slug,
            exclude_id=node_id,
            threshold=self.similarity_threshold,
        )

    def flag_if_duplicate(self, node_id: str, title: str, embedding: List[float], domain_slug: str) -> str | None:
        """
        Marks the node ``potential_duplicate`` when any same-domain neighbour
        scores above the threshold. Returns a warning describing the match, or None.
        """
        neighbours = self.find_near_duplicates(node_id, embedding, domain_slug)
        if not neighbours:
            return None

        self.db_client.flag_potential_duplicate(node_id)
        matches = ", ".join(f"'{n['title']}' (score: {n['score']:.3f})" for n in neighbours)
        logger.info("Potential duplicate flagged", extra={"node_id": node_id, "title": title, "domain_slug": domain_slug})
        return f"Potential duplicate: '{title}' similar to {matches}"
