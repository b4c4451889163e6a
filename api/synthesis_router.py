# /api/synthesis_router.py

from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from api.dependencies import get_pipeline
from api.schemas import BatchSynthesizeRequest, SynthesizeRequest
from core.models import (
    BatchSynthesisResult,
    DryRunResult,
    ResearchedBatchResult,
    RunReview,
    SynthesisResult,
    SynthesisRun,
)
from core.synthesis import SynthesisPipeline

router = APIRouter(
    prefix="/synthesis",
    tags=["Synthesis"]
)


@router.post("/", response_model=SynthesisResult)
def synthesize(request: SynthesizeRequest, pipeline: SynthesisPipeline = Depends(get_pipeline)):
    """Extracts claims from the text and writes them into the domain's knowledge graph."""
    return pipeline.synthesize(
        request.text, request.domain_slug, source=request.source, master_domain_slug=request.master_domain_slug
    )


@router.post("/dry-run", response_model=DryRunResult)
def dry_run(request: SynthesizeRequest, pipeline: SynthesisPipeline = Depends(get_pipeline)):
    return pipeline.dry_run(
        request.text, request.domain_slug, source=request.source, master_domain_slug=request.master_domain_slug
    )


@router.post("/batch", response_model=BatchSynthesisResult)
def synthesize_batch(request: BatchSynthesizeRequest, pipeline: SynthesisPipeline = Depends(get_pipeline)):
    return pipeline.synthesize_batch(request.items, request.domain_slug, request.master_domain_slug)


@router.post("/researched", response_model=ResearchedBatchResult)
def synthesize_researched(limit: int = Query(20, ge=1, le=100),
                          pipeline: SynthesisPipeline = Depends(get_pipeline)):
    """Runs synthesis over every prompt whose research output is waiting."""
    return pipeline.synthesize_researched_prompts(limit=limit)


@router.get("/runs", response_model=List[RunReview])
def review_runs(
    domain_slug: Optional[str] = None,
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    include_warnings: bool = False,
    pipeline: SynthesisPipeline = Depends(get_pipeline),
):
    return pipeline.review_runs(domain_slug, limit, offset, include_warnings)


@router.get("/runs/{run_id}", response_model=SynthesisRun)
def get_run(run_id: str, pipeline: SynthesisPipeline = Depends(get_pipeline)):
    return pipeline.runs.get(run_id)
