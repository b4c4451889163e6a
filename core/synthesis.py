# /core/synthesis.py

from typing import Dict, List, Optional

from core.claim_extractor import ClaimExtractor, default_synthesis_prompt
from core.database import GraphDBInterface
from core.embeddings import EmbeddingService
from core.entity_resolver import EntityResolver
from core.errors import DomainNotFoundError, KnowledgeCoreError, SynthesisError
from core.logger import get_logger
from core.models import (
    BatchItem,
    BatchItemError,
    BatchSynthesisResult,
    DryRunResult,
    DuplicateCandidate,
    IngestResult,
    PromptStatus,
    ResearchedBatchResult,
    ResearchedPromptOutcome,
    RunReview,
    SynthesisPrompt,
    SynthesisResult,
)
from core.node_ingestion import build_node_id_map, ingest_nodes
from core.relationship_ingestion import ingest_relationships
from core.research_prompts import ResearchPromptQueue
from core.synthesis_runs import SynthesisRunTracker

logger = get_logger(__name__)

NO_CLAIMS_WARNING = "No claims extracted from input text"


def _error_message(error: Exception) -> str:
    return error.message if isinstance(error, KnowledgeCoreError) else str(error)


class SynthesisPipeline:
    """
    Research text in, knowledge graph out: extract claims, upsert nodes,
    flag near-duplicates, write relationships, and audit every pass as a
    SynthesisRun.
    """

    def __init__(self, db: GraphDBInterface, extractor: ClaimExtractor, embedder: EmbeddingService,
                 resolver: Optional[EntityResolver] = None, prompts: Optional[ResearchPromptQueue] = None):
        self.db = db
        self.extractor = extractor
        self.embedder = embedder
        self.resolver = resolver or EntityResolver(db)
        self.prompts = prompts or ResearchPromptQueue(db)
        self.runs = SynthesisRunTracker(db)

    def get_synthesis_prompt(self, master_domain: str) -> SynthesisPrompt:
        record = self.db.get_active_synthesis_prompt(master_domain)
        if record:
            return SynthesisPrompt.model_validate(record)
        logger.info("No active synthesis prompt, using default", extra={"master_domain": master_domain})
        return default_synthesis_prompt(master_domain)

    def _require_domain(self, domain_slug: str):
        if not self.db.domain_exists(domain_slug):
            raise DomainNotFoundError(domain_slug)

    def _execute(self, text: str, domain_slug: str, synthesis_prompt: SynthesisPrompt,
                 source: Optional[str] = None, master_domain_slug: Optional[str] = None) -> SynthesisResult:
        """One tracked pass. Any failure after the run exists is recorded on it once."""
        run = self.runs.start(text, domain_slug)
        ingest = IngestResult()
        try:
            extraction = self.extractor.extract_claims(
                text, domain_slug, synthesis_prompt, source=source, master_domain_slug=master_domain_slug
            )
            result = SynthesisResult(
                run_id=run.id,
                domain_slug=domain_slug,
                claims=extraction.claims,
                warnings=list(extraction.warnings),
            )
            if not extraction.claims:
                result.warnings.append(NO_CLAIMS_WARNING)
                self.runs.complete(run.id)
                return result

            ingest_nodes(self.db, extraction.claims, domain_slug, self.embedder.embed_for_storage, self.resolver,
                         result=ingest)
            rels = ingest_relationships(self.db, extraction.claims, build_node_id_map(extraction.claims, ingest.node_ids))

            self.runs.complete(run.id, ingest.nodes_created, rels.relationships_created, ingest.duplicates_found)
        except Exception as e:
            message = _error_message(e)
            try:
                self.runs.fail(run.id, message, ingest.nodes_created + ingest.nodes_merged)
            except Exception:
                logger.exception("Failed to update SynthesisRun on error", extra={"run_id": run.id})
            raise SynthesisError(f"Synthesis failed: {message}", run_id=run.id) from e

        result.nodes_created = ingest.nodes_created
        result.nodes_merged = ingest.nodes_merged
        result.duplicates_found = ingest.duplicates_found
        result.relationships_created = rels.relationships_created
        result.relationships_skipped = rels.relationships_skipped
        result.warnings.extend(ingest.warnings + rels.warnings)
        return result

    def synthesize(self, text: str, domain_slug: str, source: Optional[str] = None,
                   master_domain_slug: Optional[str] = None) -> SynthesisResult:
        self._require_domain(domain_slug)
        synthesis_prompt = self.get_synthesis_prompt(master_domain_slug or domain_slug)
        result = self._execute(text, domain_slug, synthesis_prompt, source, master_domain_slug)
        logger.info(
            "Synthesis finished",
            extra={
                "run_id": result.run_id,
                "domain_slug": domain_slug,
                "nodes_created": result.nodes_created,
                "relationships_created": result.relationships_created,
                "duplicates_found": result.duplicates_found,
            },
        )
        return result

    def synthesize_batch(self, items: List[BatchItem], domain_slug: str,
                         master_domain_slug: Optional[str] = None) -> BatchSynthesisResult:
        """
        Processes items one after another. A failing item is recorded against
        its own run and the batch moves on; every item's run id is reported.
        """
        self._require_domain(domain_slug)
        synthesis_prompt = self.get_synthesis_prompt(master_domain_slug or domain_slug)
        batch = BatchSynthesisResult(total_items=len(items))

        for index, item in enumerate(items):
            try:
                result = self._execute(item.text, domain_slug, synthesis_prompt, item.source, master_domain_slug)
            except Exception as e:
                run_id = getattr(e, "run_id", None)
                batch.errors.append(BatchItemError(item_index=index, run_id=run_id, error=_error_message(e)))
                if run_id:
                    batch.run_ids.append(run_id)
                logger.error("Batch item failed", extra={"item_index": index, "run_id": run_id})
                continue

            batch.run_ids.append(result.run_id)
            batch.total_nodes_created += result.nodes_created
            batch.total_relationships_created += result.relationships_created
            batch.total_duplicates_found += result.duplicates_found
            batch.warnings.extend(f"Item {index}: {w}" for w in result.warnings)

        batch.failed = len(batch.errors)
        batch.succeeded = batch.total_items - batch.failed
        logger.info(
            "Batch synthesis finished",
            extra={"domain_slug": domain_slug, "succeeded": batch.succeeded, "failed": batch.failed},
        )
        return batch

    def dry_run(self, text: str, domain_slug: str, source: Optional[str] = None,
                master_domain_slug: Optional[str] = None) -> DryRunResult:
        """Extraction only: nothing is embedded, written or tracked."""
        self._require_domain(domain_slug)
        synthesis_prompt = self.get_synthesis_prompt(master_domain_slug or domain_slug)
        extraction = self.extractor.extract_claims(
            text, domain_slug, synthesis_prompt, source=source, master_domain_slug=master_domain_slug
        )
        return DryRunResult(
            domain_slug=domain_slug,
            claims_extracted=len(extraction.claims),
            claims=extraction.claims,
            warnings=extraction.warnings,
        )

    def review_runs(self, domain_slug: Optional[str] = None, limit: int = 20, offset: int = 0,
                    include_warnings: bool = False) -> List[RunReview]:
        reviews = []
        for run in self.runs.list(domain_slug, limit, offset):
            if not include_warnings:
                reviews.append(RunReview(run=run.model_copy(update={"errors": []})))
                continue
            duplicates = [
                DuplicateCandidate.model_validate(row)
                for row in self.db.list_potential_duplicates(run.created_at, run.domain_slug)
            ]
            reviews.append(RunReview(run=run, potential_duplicates=duplicates))
        return reviews

    def synthesize_researched_prompts(self, limit: int = 20) -> ResearchedBatchResult:
        """
        Synthesizes the output of every 'researched' prompt, linking each
        prompt to the run it produced.
        """
        summary = ResearchedBatchResult()
        prompt_cache: Dict[str, SynthesisPrompt] = {}

        for prompt in self.prompts.list_prompts(status=PromptStatus.RESEARCHED, limit=limit):
            summary.processed += 1
            if not prompt.research_output:
                summary.skipped += 1
                summary.results.append(ResearchedPromptOutcome(
                    prompt_id=prompt.id, title=prompt.title, status="skipped", error="No research_output found",
                ))
                continue

            run_id = None
            try:
                self.prompts.transition(prompt.id, PromptStatus.SYNTHESIZING)
                self._require_domain(prompt.domain_slug)
                if prompt.master_domain not in prompt_cache:
                    prompt_cache[prompt.master_domain] = self.get_synthesis_prompt(prompt.master_domain)
                result = self._execute(
                    prompt.research_output,
                    prompt.domain_slug,
                    prompt_cache[prompt.master_domain],
                    master_domain_slug=prompt.master_domain,
                )
                run_id = result.run_id
                self.db.link_prompt_to_run(prompt.id, run_id)
                self.prompts.transition(prompt.id, PromptStatus.COMPLETED)
            except Exception as e:
                message = _error_message(e)
                run_id = run_id or getattr(e, "run_id", None)
                self._fail_prompt(prompt.id, run_id, message)
                summary.failed += 1
                summary.results.append(ResearchedPromptOutcome(
                    prompt_id=prompt.id, title=prompt.title, status="failed", run_id=run_id, error=message,
                ))
                continue

            summary.succeeded += 1
            summary.total_nodes_created += result.nodes_created
            summary.results.append(ResearchedPromptOutcome(
                prompt_id=prompt.id, title=prompt.title, status="completed",
                run_id=run_id, nodes_created=result.nodes_created,
            ))

        logger.info(
            "Researched prompts synthesized",
            extra={"processed": summary.processed, "succeeded": summary.succeeded, "failed": summary.failed},
        )
        return summary

    def _fail_prompt(self, prompt_id: str, run_id: Optional[str], message: str):
        try:
            if run_id:
                self.db.link_prompt_to_run(prompt_id, run_id)
            self.prompts.mark_failed(prompt_id, message)
        except Exception:
            logger.exception("Failed to mark research prompt failed", extra={"prompt_id": prompt_id})
