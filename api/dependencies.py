# /api/dependencies.py

from functools import lru_cache

from fastapi import Depends

from core.claim_extractor import ClaimExtractor
from core.database import GraphDBInterface, Neo4jDatabase, create_driver
from core.embeddings import EmbeddingService
from core.knowledge_nodes import KnowledgeNodeService
from core.research_prompts import ResearchPromptQueue
from core.retriever import KnowledgeRetriever
from core.synthesis import SynthesisPipeline


@lru_cache
def get_driver():
    """One driver and connection pool for the life of the app; closed by the lifespan hook."""
    return create_driver()


def close_driver():
    if get_driver.cache_info().currsize:
        get_driver().close()
        get_driver.cache_clear()


def get_db() -> GraphDBInterface:
    # Sessions are opened and released per operation inside Neo4jDatabase.
    return Neo4jDatabase(driver=get_driver())


@lru_cache
def get_extractor() -> ClaimExtractor:
    return ClaimExtractor()


@lru_cache
def get_embedder() -> EmbeddingService:
    return EmbeddingService()


def get_prompt_queue(db: GraphDBInterface = Depends(get_db)) -> ResearchPromptQueue:
    return ResearchPromptQueue(db)


def get_pipeline(
    db: GraphDBInterface = Depends(get_db),
    extractor: ClaimExtractor = Depends(get_extractor),
    embedder: EmbeddingService = Depends(get_embedder),
) -> SynthesisPipeline:
    return SynthesisPipeline(db, extractor, embedder)


def get_retriever(
    db: GraphDBInterface = Depends(get_db),
    embedder: EmbeddingService = Depends(get_embedder),
) -> KnowledgeRetriever:
    return KnowledgeRetriever(db, embedder)


def get_node_service(
    db: GraphDBInterface = Depends(get_db),
    embedder: EmbeddingService = Depends(get_embedder),
) -> KnowledgeNodeService:
    return KnowledgeNodeService(db, embedder)
