# /api/schemas.py

from typing import List, Optional

from pydantic import BaseModel, Field

from core.models import BatchItem, PromptSource, PromptStatus


class SynthesizeRequest(BaseModel):
    text: str = Field(min_length=1, max_length=100000, description="Research text to synthesize.")
    domain_slug: str = Field(min_length=1)
    master_domain_slug: Optional[str] = None
    source: Optional[str] = Field(default=None, max_length=500, description="Source attribution.")


class BatchSynthesizeRequest(BaseModel):
    items: List[BatchItem] = Field(min_length=1, max_length=50)
    domain_slug: str = Field(min_length=1)
    master_domain_slug: Optional[str] = None


class QueryRequest(BaseModel):
    query: str = Field(min_length=1, max_length=2000)
    top_k: Optional[int] = Field(default=None, ge=1, le=50)
    domain_filter: Optional[str] = None


class CreatePromptRequest(BaseModel):
    title: str
    prompt_text: str
    domain_slug: str = Field(min_length=1)
    master_domain: Optional[str] = None
    priority: Optional[float] = None
    source: PromptSource = "manual"
    status: PromptStatus = PromptStatus.QUEUED


class EditPromptRequest(BaseModel):
    prompt_text: Optional[str] = None
    title: Optional[str] = None
    priority: Optional[float] = None


class TransitionRequest(BaseModel):
    status: PromptStatus
    error_message: Optional[str] = None


class ResearchResultRequest(BaseModel):
    research_text: str = Field(min_length=1, max_length=500000)


class FailPromptRequest(BaseModel):
    error_message: str = Field(min_length=1)
