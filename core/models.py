# /core/models.py

import datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, get_args

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

# This file holds all the shared Pydantic data structures.

ClaimType = Literal[
    "definition",
    "causal_claim",
    "trend",
    "comparison",
    "recommendation",
    "prediction",
    "framework",
    "metric",
    "case_study",
]
CLAIM_TYPES = get_args(ClaimType)

EvidenceStrength = Literal["strong", "moderate", "weak", "anecdotal"]

RelationshipCategoryName = Literal["CAUSAL", "EPISTEMIC", "CONTEXTUAL", "STRUCTURAL"]

RunStatus = Literal["partial", "completed", "failed"]

PromptSource = Literal["manual", "gap_detection", "freshness_decay", "coverage_map", "unclassified_cluster"]

SynthesisPromptStatus = Literal["active", "deprecated", "draft"]


def utc_now() -> str:
    return datetime.datetime.now(datetime.timezone.utc).isoformat()


class RelationshipCategory(str, Enum):
    """The four fixed edge types. Neo4j cannot parameterise a relationship type."""
    CAUSAL = "CAUSAL"
    EPISTEMIC = "EPISTEMIC"
    CONTEXTUAL = "CONTEXTUAL"
    STRUCTURAL = "STRUCTURAL"


# Vocabulary of the stance-like property each category carries.
CAUSAL_DIRECTIONS = ("positive", "negative", "bidirectional")
EPISTEMIC_STANCES = ("supports", "contradicts", "supersedes", "refines")
CONTEXTUAL_SCOPES = ("qualifies", "applies_to", "except_when", "depends_on")
STRUCTURAL_HIERARCHIES = ("is_a", "part_of", "instance_of", "evolved_from", "example_of", "contains")

CATEGORY_VOCABULARY = {
    RelationshipCategory.CAUSAL: CAUSAL_DIRECTIONS,
    RelationshipCategory.EPISTEMIC: EPISTEMIC_STANCES,
    RelationshipCategory.CONTEXTUAL: CONTEXTUAL_SCOPES,
    RelationshipCategory.STRUCTURAL: STRUCTURAL_HIERARCHIES,
}


class PromptStatus(str, Enum):
    QUEUED = "queued"
    NEEDS_REVIEW = "needs_review"
    READY_FOR_RESEARCH = "ready_for_research"
    RESEARCHED = "researched"
    SYNTHESIZING = "synthesizing"
    COMPLETED = "completed"
    FAILED = "failed"
    REJECTED = "rejected"


# --- Extraction DTOs (strict layer) ---

class Evidence(BaseModel):
    model_config = ConfigDict(strict=True)

    source: str = Field(min_length=1, max_length=500)
    year: int = Field(ge=1900, le=2100)
    type: str = Field(min_length=1, max_length=200)
    strength: EvidenceStrength
    citation: str = Field(min_length=1, max_length=2000)
    methodology_summary: Optional[str] = Field(default=None, max_length=5000)


class ExtractedRelationship(BaseModel):
    """A relationship intent emitted alongside a claim, targeting another claim by title."""
    model_config = ConfigDict(strict=True)

    target_title: str = Field(min_length=1, description="Title of the node this relationship points at.")
    category: RelationshipCategoryName
    type: str = Field(description="Free-form relationship label chosen by the model.")
    stance: str = Field(description="Direction, stance, scope or hierarchy depending on the category.")
    strength: float = Field(ge=0, le=1)
    mechanism: Optional[str] = None
    conditions: Optional[str] = None


class ExtractedClaim(BaseModel):
    model_config = ConfigDict(strict=True)

    title: str = Field(min_length=1, max_length=200)
    definition: str = Field(min_length=1, max_length=5000)
    summary: str = Field(min_length=1, max_length=1000)
    claim_type: ClaimType
    confidence: float = Field(ge=0, le=1)
    evidence: List[Evidence]
    relationships: List[ExtractedRelationship]


# --- Extraction DTOs (lenient layer) ---

def _keep_valid(model, items: Any, normalise=None) -> list:
    if not isinstance(items, list):
        return []
    kept = []
    for item in items:
        if normalise is not None:
            item = normalise(item)
        try:
            kept.append(model.model_validate(item, strict=False))
        except ValidationError:
            continue
    return kept


def _normalise_relationship(item: Any) -> Any:
    if not isinstance(item, dict):
        return item
    item = dict(item)
    if isinstance(item.get("category"), str):
        item["category"] = item["category"].strip().upper()
    item.setdefault("type", "related_to")
    item.setdefault("stance", "")
    item.setdefault("strength", 0.5)
    return item


class LenientExtractedClaim(BaseModel):
    """
    Salvage schema for claims the strict layer rejected. Only title and
    definition are required; every other field falls back to a safe default.
    """
    title: str = Field(min_length=1, max_length=200)
    definition: str = Field(min_length=1, max_length=5000)
    summary: str = ""
    claim_type: ClaimType = "definition"
    confidence: float = 0.5
    evidence: List[Evidence] = Field(default_factory=list)
    relationships: List[ExtractedRelationship] = Field(default_factory=list)

    @field_validator("claim_type", mode="before")
    @classmethod
    def _fallback_claim_type(cls, value):
        return value if value in CLAIM_TYPES else "definition"

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, value):
        try:
            return min(1.0, max(0.0, float(value)))
        except (TypeError, ValueError):
            return 0.5

    @field_validator("summary", mode="before")
    @classmethod
    def _summary_as_text(cls, value):
        return value if isinstance(value, str) else ""

    @field_validator("evidence", mode="before")
    @classmethod
    def _drop_invalid_evidence(cls, value):
        return _keep_valid(Evidence, value)

    @field_validator("relationships", mode="before")
    @classmethod
    def _drop_invalid_relationships(cls, value):
        return _keep_valid(ExtractedRelationship, value, normalise=_normalise_relationship)

    @model_validator(mode="after")
    def _default_summary(self):
        if not self.summary.strip():
            self.summary = self.definition[:1000]
        else:
            self.summary = self.summary[:1000]
        return self

    def to_claim(self) -> ExtractedClaim:
        return ExtractedClaim.model_validate(self.model_dump(), strict=False)


class ExtractionResult(BaseModel):
    claims: List[ExtractedClaim] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


# --- Graph records ---

class KnowledgeNode(BaseModel):
    id: str = Field(description="Deterministic identity derived from title + domain.")
    title: str
    summary: str
    definition: str
    domain_slug: str
    embedding: Optional[List[float]] = Field(default=None, description="The vector embedding of the node.")
    confidence: Optional[float] = None
    claim_type: Optional[str] = None
    evidence: List[Evidence] = Field(default_factory=list)
    conditions: Optional[str] = None
    temporal_range: Optional[str] = None
    geographic_scope: Optional[str] = None
    status: str = "active"
    potential_duplicate: bool = False
    freshness_date: Optional[str] = None
    created_at: Optional[str] = None
    extensions: Dict[str, Any] = Field(default_factory=dict, description="Open-ended properties outside the core schema.")


class KnowledgeNodeCreate(BaseModel):
    """A hand-written node, outside any synthesis run."""
    title: str = Field(min_length=1, max_length=200)
    definition: str = Field(min_length=1, max_length=5000)
    summary: str = Field(min_length=1, max_length=1000)
    domain_slug: str = Field(min_length=1)
    claim_type: ClaimType = "definition"
    confidence: Optional[float] = Field(default=None, ge=0, le=1)
    evidence: List[Evidence] = Field(default_factory=list)
    conditions: Optional[str] = Field(default=None, max_length=2000)
    temporal_range: Optional[str] = Field(default=None, max_length=200)
    geographic_scope: Optional[str] = Field(default=None, max_length=200)
    extensions: Dict[str, Any] = Field(default_factory=dict)


class KnowledgeNodeUpdate(BaseModel):
    """PATCH body: only the fields that are set are written. Domain and id never change."""
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    definition: Optional[str] = Field(default=None, min_length=1, max_length=5000)
    summary: Optional[str] = Field(default=None, min_length=1, max_length=1000)
    claim_type: Optional[ClaimType] = None
    confidence: Optional[float] = Field(default=None, ge=0, le=1)
    evidence: Optional[List[Evidence]] = None
    conditions: Optional[str] = Field(default=None, max_length=2000)
    temporal_range: Optional[str] = Field(default=None, max_length=200)
    geographic_scope: Optional[str] = Field(default=None, max_length=200)
    status: Optional[str] = Field(default=None, min_length=1, max_length=50)
    extensions: Optional[Dict[str, Any]] = None


class SynthesisPrompt(BaseModel):
    version: int = 1
    master_domain: str
    effective_date: str = Field(default_factory=utc_now)
    prompt_text: str
    target_schema_version: int = 1
    status: SynthesisPromptStatus = "active"


class SynthesisRun(BaseModel):
    id: str
    input_hash: str
    domain_slug: str
    status: RunStatus = "partial"
    nodes_created: int = 0
    relationships_created: int = 0
    duplicate_warnings: int = 0
    errors: List[str] = Field(default_factory=list)
    created_at: str = Field(default_factory=utc_now)
    completed_at: Optional[str] = None


class ResearchPrompt(BaseModel):
    id: str
    title: str
    prompt_text: str
    domain_slug: str
    master_domain: str
    priority: float = Field(ge=0, le=10)
    source: PromptSource = "manual"
    status: PromptStatus = PromptStatus.QUEUED
    research_output: Optional[str] = None
    research_word_count: Optional[int] = None
    created_date: Optional[str] = None
    researched_date: Optional[str] = None
    completed_date: Optional[str] = None
    error_message: Optional[str] = None


# --- Pipeline results ---

class IngestResult(BaseModel):
    nodes_created: int = 0
    nodes_merged: int = 0
    duplicates_found: int = 0
    node_ids: List[Optional[str]] = Field(default_factory=list, description="Aligned with the input claims; None where a claim was skipped.")
    warnings: List[str] = Field(default_factory=list)


class RelIngestResult(BaseModel):
    relationships_created: int = 0
    relationships_skipped: int = 0
    warnings: List[str] = Field(default_factory=list)


class SynthesisResult(BaseModel):
    run_id: str
    domain_slug: str
    claims: List[ExtractedClaim] = Field(default_factory=list)
    nodes_created: int = 0
    nodes_merged: int = 0
    relationships_created: int = 0
    relationships_skipped: int = 0
    duplicates_found: int = 0
    warnings: List[str] = Field(default_factory=list)


class BatchItem(BaseModel):
    text: str = Field(min_length=1)
    source: Optional[str] = None


class BatchItemError(BaseModel):
    item_index: int
    run_id: Optional[str] = None
    error: str


class BatchSynthesisResult(BaseModel):
    total_items: int = 0
    succeeded: int = 0
    failed: int = 0
    total_nodes_created: int = 0
    total_relationships_created: int = 0
    total_duplicates_found: int = 0
    run_ids: List[str] = Field(default_factory=list)
    errors: List[BatchItemError] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


class DryRunResult(BaseModel):
    domain_slug: str
    claims_extracted: int
    claims: List[ExtractedClaim] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


class DuplicateCandidate(BaseModel):
    node_id: str
    title: str


class RunReview(BaseModel):
    run: SynthesisRun
    potential_duplicates: Optional[List[DuplicateCandidate]] = None


class ResearchedPromptOutcome(BaseModel):
    prompt_id: str
    title: str
    status: Literal["completed", "failed", "skipped"]
    run_id: Optional[str] = None
    nodes_created: int = 0
    error: Optional[str] = None


class ResearchedBatchResult(BaseModel):
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    total_nodes_created: int = 0
    results: List[ResearchedPromptOutcome] = Field(default_factory=list)


# --- Retrieval ---

class RelatedNode(BaseModel):
    id: str
    title: str
    definition: Optional[str] = None
    relationship_type: RelationshipCategoryName
    stance: Optional[str] = None
    mechanism: Optional[str] = None


class RetrievedNode(BaseModel):
    id: str
    title: str
    definition: str = ""
    summary: str = ""
    confidence: Optional[float] = None
    claim_type: Optional[str] = None
    score: float
    related: List[RelatedNode] = Field(default_factory=list)


class KnowledgeContext(BaseModel):
    hits: List[RetrievedNode] = Field(default_factory=list, description="Hits sorted by descending score.")
    blocks: List[str] = Field(default_factory=list, description="Serialized hits kept within budget, lowest score first.")
    warnings: List[str] = Field(default_factory=list)
    text: str


# --- Research queue ---

class NextPrompt(BaseModel):
    prompt: Optional[ResearchPrompt] = None
    remaining_count: int = 0


class DomainStatusCount(BaseModel):
    domain_slug: str
    status: str
    count: int


class QueueStatus(BaseModel):
    total: int
    by_status: Dict[str, int]
    by_domain: List[DomainStatusCount]
    next_up: Optional[ResearchPrompt] = None
