# /core/synthesis_runs.py

import hashlib
import uuid
from typing import List, Optional

from core.database import GraphDBInterface
from core.errors import RunNotFoundError
from core.logger import get_logger
from core.models import SynthesisRun, utc_now

logger = get_logger(__name__)


def input_hash(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


class SynthesisRunTracker:
    """Audit records for synthesis invocations, one SynthesisRun node per run."""

    def __init__(self, db: GraphDBInterface):
        self.db = db

    def start(self, text: str, domain_slug: str) -> SynthesisRun:
        # Runs start as 'partial' so an interrupted run never reads as completed.
        run = SynthesisRun(id=str(uuid.uuid4()), input_hash=input_hash(text), domain_slug=domain_slug)
        self.db.create_synthesis_run(run.model_dump())
        logger.info("Synthesis run started", extra={"run_id": run.id, "domain_slug": domain_slug})
        return run

    def complete(self, run_id: str, nodes_created: int = 0, relationships_created: int = 0,
                 duplicate_warnings: int = 0):
        self.db.update_synthesis_run(run_id, {
            "status": "completed",
            "nodes_created": nodes_created,
            "relationships_created": relationships_created,
            "duplicate_warnings": duplicate_warnings,
            "completed_at": utc_now(),
        })
        logger.info("Synthesis run completed", extra={"run_id": run_id, "nodes_created": nodes_created})

    def fail(self, run_id: str, error: str, nodes_ingested: int = 0) -> str:
        """Records the error; the run stays 'partial' if any node was already written."""
        status = "partial" if nodes_ingested > 0 else "failed"
        self.db.update_synthesis_run(run_id, {
            "status": status,
            "errors": [error],
            "completed_at": utc_now(),
        })
        logger.error("Synthesis run failed", extra={"run_id": run_id, "status": status, "error": error})
        return status

    def get(self, run_id: str) -> SynthesisRun:
        record = self.db.get_synthesis_run(run_id)
        if record is None:
            raise RunNotFoundError(run_id)
        return SynthesisRun.model_validate(record)

    def list(self, domain_slug: Optional[str] = None, limit: int = 20, offset: int = 0) -> List[SynthesisRun]:
        records = self.db.list_synthesis_runs(domain_slug, limit, offset)
        return [SynthesisRun.model_validate(r) for r in records]
