# /api/knowledge_router.py

from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from api.dependencies import get_node_service, get_retriever
from api.schemas import QueryRequest
from core.knowledge_nodes import KnowledgeNodeService
from core.models import KnowledgeContext, KnowledgeNode, KnowledgeNodeCreate, KnowledgeNodeUpdate
from core.retriever import KnowledgeRetriever

router = APIRouter(
    prefix="/knowledge",
    tags=["Knowledge Base"]
)


@router.post("/query", response_model=KnowledgeContext)
def query_knowledge(request: QueryRequest, retriever: KnowledgeRetriever = Depends(get_retriever)):
    """
    Vector search plus one-hop graph expansion. ``text`` is the formatted
    context block; ``hits`` carries the same results as structured data.
    """
    return retriever.query_knowledge(request.query, top_k=request.top_k, domain_filter=request.domain_filter)


@router.get("/nodes", response_model=List[KnowledgeNode])
def list_nodes(
    domain_slug: Optional[str] = None,
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    service: KnowledgeNodeService = Depends(get_node_service),
):
    return service.list_nodes(domain_slug, limit, offset)


@router.post("/nodes", response_model=KnowledgeNode, status_code=201)
def create_node(request: KnowledgeNodeCreate, service: KnowledgeNodeService = Depends(get_node_service)):
    return service.create_node(request)


@router.get("/nodes/{node_id}", response_model=KnowledgeNode)
def get_node(node_id: str, service: KnowledgeNodeService = Depends(get_node_service)):
    return service.get_node(node_id)


@router.patch("/nodes/{node_id}", response_model=KnowledgeNode)
def update_node(node_id: str, request: KnowledgeNodeUpdate,
                service: KnowledgeNodeService = Depends(get_node_service)):
    """Only the fields present in the body are written; title or definition edits re-embed the node."""
    return service.update_node(node_id, request)
