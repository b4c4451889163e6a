# /api/research_router.py

from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from api.dependencies import get_prompt_queue
from api.schemas import (
    CreatePromptRequest,
    EditPromptRequest,
    FailPromptRequest,
    ResearchResultRequest,
    TransitionRequest,
)
from core.models import NextPrompt, PromptStatus, QueueStatus, ResearchPrompt
from core.research_prompts import ResearchPromptQueue

router = APIRouter(
    prefix="/research-prompts",
    tags=["Research Prompts"]
)


@router.post("/", response_model=ResearchPrompt, status_code=201)
def create_prompt(request: CreatePromptRequest, queue: ResearchPromptQueue = Depends(get_prompt_queue)):
    return queue.create_prompt(
        title=request.title,
        prompt_text=request.prompt_text,
        domain_slug=request.domain_slug,
        master_domain=request.master_domain,
        priority=request.priority,
        source=request.source,
        status=request.status,
    )


@router.get("/", response_model=List[ResearchPrompt])
def list_prompts(
    status: Optional[PromptStatus] = None,
    domain_slug: Optional[str] = None,
    source: Optional[str] = None,
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    queue: ResearchPromptQueue = Depends(get_prompt_queue),
):
    return queue.list_prompts(status=status, domain_slug=domain_slug, source=source, limit=limit, offset=offset)


# Fixed paths are declared before /{prompt_id} so they are not captured by it.

@router.get("/next", response_model=NextPrompt)
def get_next_prompt(queue: ResearchPromptQueue = Depends(get_prompt_queue)):
    return queue.get_next_prompt()


@router.get("/status", response_model=QueueStatus)
def queue_status(queue: ResearchPromptQueue = Depends(get_prompt_queue)):
    return queue.queue_status()


@router.post("/approve-all", response_model=List[ResearchPrompt])
def approve_all(queue: ResearchPromptQueue = Depends(get_prompt_queue)):
    return queue.approve_all()


@router.post("/prepare", response_model=List[ResearchPrompt])
def prepare_research_queue(queue: ResearchPromptQueue = Depends(get_prompt_queue)):
    """Moves every queued prompt to ready_for_research."""
    return queue.prepare_research_queue()


@router.get("/{prompt_id}", response_model=ResearchPrompt)
def get_prompt(prompt_id: str, queue: ResearchPromptQueue = Depends(get_prompt_queue)):
    return queue.get_prompt(prompt_id)


@router.patch("/{prompt_id}", response_model=ResearchPrompt)
def edit_prompt(prompt_id: str, request: EditPromptRequest, queue: ResearchPromptQueue = Depends(get_prompt_queue)):
    return queue.edit_prompt(prompt_id, prompt_text=request.prompt_text, title=request.title, priority=request.priority)


@router.post("/{prompt_id}/transition", response_model=ResearchPrompt)
def transition(prompt_id: str, request: TransitionRequest, queue: ResearchPromptQueue = Depends(get_prompt_queue)):
    return queue.transition(prompt_id, request.status, error_message=request.error_message)


@router.post("/{prompt_id}/research", response_model=ResearchPrompt)
def save_research_result(prompt_id: str, request: ResearchResultRequest,
                         queue: ResearchPromptQueue = Depends(get_prompt_queue)):
    return queue.save_research_result(prompt_id, request.research_text)


@router.post("/{prompt_id}/skip", response_model=ResearchPrompt)
def skip_prompt(prompt_id: str, queue: ResearchPromptQueue = Depends(get_prompt_queue)):
    return queue.skip_prompt(prompt_id)


@router.post("/{prompt_id}/approve", response_model=ResearchPrompt)
def approve_prompt(prompt_id: str, queue: ResearchPromptQueue = Depends(get_prompt_queue)):
    return queue.approve_prompt(prompt_id)


@router.post("/{prompt_id}/reject", response_model=ResearchPrompt)
def reject_prompt(prompt_id: str, queue: ResearchPromptQueue = Depends(get_prompt_queue)):
    return queue.reject_prompt(prompt_id)


@router.post("/{prompt_id}/fail", response_model=ResearchPrompt)
def mark_failed(prompt_id: str, request: FailPromptRequest, queue: ResearchPromptQueue = Depends(get_prompt_queue)):
    return queue.mark_failed(prompt_id, request.error_message)
