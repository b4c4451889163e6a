# /core/claim_extractor.py

import json
from dataclasses import dataclass, field
from typing import Any, List, Optional, Union

from langchain_core.prompts import ChatPromptTemplate
from langchain_google_genai import ChatGoogleGenerativeAI
from pydantic import ValidationError

from core.config import settings
from core.embeddings import transient_retry
from core.logger import get_logger
from core.models import (
    CLAIM_TYPES,
    ExtractedClaim,
    ExtractionResult,
    LenientExtractedClaim,
    RelationshipCategory,
    SynthesisPrompt,
)

logger = get_logger(__name__)

DEFAULT_PROMPT_TEXT = (
    "You are a knowledge extraction specialist. Extract structured knowledge claims from the "
    "provided research text. Each claim should be atomic, well-defined, and supported by "
    "evidence from the text."
)

EVIDENCE_JSON_SCHEMA = {
    "type": "object",
    "properties": {
        "source": {"type": "string"},
        "year": {"type": "integer"},
        "type": {"type": "string"},
        "strength": {"type": "string", "enum": ["strong", "moderate", "weak", "anecdotal"]},
        "citation": {"type": "string"},
        "methodology_summary": {"type": "string"},
    },
    "required": ["source", "year", "type", "strength", "citation"],
}

RELATIONSHIP_JSON_SCHEMA = {
    "type": "object",
    "properties": {
        "target_title": {"type": "string"},
        "category": {"type": "string", "enum": [c.value for c in RelationshipCategory]},
        "type": {"type": "string"},
        "stance": {"type": "string"},
        "strength": {"type": "number"},
        "mechanism": {"type": "string"},
        "conditions": {"type": "string"},
    },
    "required": ["target_title", "category", "type", "stance", "strength"],
}

CLAIMS_JSON_SCHEMA = {
    "title": "extract_claims",
    "description": "Extract knowledge claims from research text. Return all claims found.",
    "type": "object",
    "properties": {
        "claims": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "title": {"type": "string"},
                    "definition": {"type": "string"},
                    "summary": {"type": "string"},
                    "claim_type": {"type": "string", "enum": list(CLAIM_TYPES)},
                    "confidence": {"type": "number"},
                    "evidence": {"type": "array", "items": EVIDENCE_JSON_SCHEMA},
                    "relationships": {"type": "array", "items": RELATIONSHIP_JSON_SCHEMA},
                },
                "required": [
                    "title", "definition", "summary", "claim_type",
                    "confidence", "evidence", "relationships",
                ],
            },
        }
    },
    "required": ["claims"],
}


# --- Validation outcome: one of three shapes ---

@dataclass
class Accepted:
    claim: ExtractedClaim


@dataclass
class AcceptedWithDefaults:
    claim: ExtractedClaim
    warnings: List[str] = field(default_factory=list)


@dataclass
class Rejected:
    reason: str


ClaimValidation = Union[Accepted, AcceptedWithDefaults, Rejected]


def _summarise_errors(error: ValidationError) -> str:
    parts = []
    for err in error.errors():
        location = ".".join(str(p) for p in err["loc"]) or "claim"
        parts.append(f"{location}: {err['msg']}")
    return "; ".join(parts)


def validate_claim(raw: Any, index: int) -> ClaimValidation:
    """Strict schema first, lenient schema second, otherwise rejected."""
    try:
        return Accepted(ExtractedClaim.model_validate(raw))
    except ValidationError as strict_error:
        strict_summary = _summarise_errors(strict_error)

    try:
        lenient = LenientExtractedClaim.model_validate(raw)
    except ValidationError as lenient_error:
        return Rejected(
            f"Claim {index}: skipped, failed both strict and lenient validation. "
            f"Strict: {strict_summary}. Lenient: {_summarise_errors(lenient_error)}"
        )
    return AcceptedWithDefaults(
        lenient.to_claim(),
        [f"Claim {index}: passed lenient validation only (strict errors: {strict_summary})"],
    )


def validate_claims(raw_claims: List[Any]) -> ExtractionResult:
    result = ExtractionResult()
    for index, raw in enumerate(raw_claims):
        outcome = validate_claim(raw, index)
        if isinstance(outcome, Accepted):
            result.claims.append(outcome.claim)
        elif isinstance(outcome, AcceptedWithDefaults):
            result.claims.append(outcome.claim)
            result.warnings.extend(outcome.warnings)
        else:
            result.warnings.append(outcome.reason)
    return result


def parse_structured_response(response: Any) -> Optional[List[Any]]:
    """
    Pulls the raw claim list out of an untrusted model response.
    Accepts {"claims": [...]}, a bare list, or a JSON string of either.
    """
    if isinstance(response, str):
        try:
            response = json.loads(response)
        except ValueError:
            return None
    if hasattr(response, "model_dump"):
        response = response.model_dump()
    if isinstance(response, dict):
        claims = response.get("claims")
        return claims if isinstance(claims, list) else None
    if isinstance(response, list):
        return response
    return None


def default_synthesis_prompt(master_domain: str) -> SynthesisPrompt:
    return SynthesisPrompt(master_domain=master_domain, prompt_text=DEFAULT_PROMPT_TEXT)


def get_synthesis_prompt_template() -> ChatPromptTemplate:
    return ChatPromptTemplate.from_messages([
        ("system", """{prompt_text}

Schema version: {schema_version}
{domain_context}

You MUST respond with a JSON object containing a single key 'claims' whose value is an array of extracted claim objects.
Each claim must have: title, definition, summary, claim_type, confidence, evidence (array), relationships (array).
Relationships point at other claims by their exact title and use one of the categories CAUSAL, EPISTEMIC, CONTEXTUAL, STRUCTURAL."""),
        ("human", "Extract knowledge claims from the following research text.{source_context}\n\n---\n{text}\n---"),
    ])


def build_synthesis_prompt(text: str, domain_slug: str, synthesis_prompt: SynthesisPrompt,
                           source: Optional[str] = None, master_domain_slug: Optional[str] = None):
    """Builds the chat messages for one extraction request."""
    if master_domain_slug:
        domain_context = f"Master domain: {master_domain_slug}, Domain: {domain_slug}"
    else:
        domain_context = f"Domain: {domain_slug}"
    return get_synthesis_prompt_template().format_messages(
        prompt_text=synthesis_prompt.prompt_text,
        schema_version=synthesis_prompt.target_schema_version,
        domain_context=domain_context,
        source_context=f"\nSource: {source}" if source else "",
        text=text,
    )


class ClaimExtractor:
    """Turns research text into validated claims through a structured-output chat model."""

    def __init__(self, llm=None, retry_policy=None):
        self.llm = llm or ChatGoogleGenerativeAI(
            model=settings.GENERATION_MODEL,
            temperature=0,
            max_output_tokens=settings.LLM_MAX_OUTPUT_TOKENS,
        )
        self._retry = retry_policy or transient_retry()

    def extract_claims(self, text: str, domain_slug: str, synthesis_prompt: SynthesisPrompt,
                       source: Optional[str] = None, master_domain_slug: Optional[str] = None) -> ExtractionResult:
        messages = build_synthesis_prompt(text, domain_slug, synthesis_prompt, source, master_domain_slug)
        structured_llm = self.llm.with_structured_output(CLAIMS_JSON_SCHEMA)
        response = self._retry(lambda: structured_llm.invoke(messages))()

        raw_claims = parse_structured_response(response)
        if raw_claims is None:
            logger.warning("Unparseable extraction response", extra={"domain_slug": domain_slug})
            return ExtractionResult(warnings=["Extraction response could not be parsed; no claims extracted"])

        result = validate_claims(raw_claims)
        for warning in result.warnings:
            logger.warning(warning, extra={"domain_slug": domain_slug})
        logger.info(
            "Claims extracted",
            extra={"domain_slug": domain_slug, "raw": len(raw_claims), "accepted": len(result.claims)},
        )
        return result
