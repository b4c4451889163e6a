# /core/research_prompts.py

import re
import uuid
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from core.config import settings
from core.database import GraphDBInterface
from core.errors import InvalidTransitionError, PromptNotFoundError, PromptValidationError
from core.logger import get_logger
from core.models import (
    DomainStatusCount,
    NextPrompt,
    PromptStatus,
    QueueStatus,
    ResearchPrompt,
    utc_now,
)

logger = get_logger(__name__)

MAX_TITLE_LENGTH = 300
MAX_PROMPT_TEXT_LENGTH = 10000

TERMINAL_STATUSES = frozenset({PromptStatus.COMPLETED, PromptStatus.FAILED, PromptStatus.REJECTED})

# 'failed' is reachable from every non-terminal status and is not listed here.
ALLOWED_TRANSITIONS = {
    PromptStatus.QUEUED: frozenset({PromptStatus.NEEDS_REVIEW, PromptStatus.READY_FOR_RESEARCH}),
    PromptStatus.NEEDS_REVIEW: frozenset({
        PromptStatus.QUEUED, PromptStatus.READY_FOR_RESEARCH, PromptStatus.REJECTED,
    }),
    PromptStatus.READY_FOR_RESEARCH: frozenset({PromptStatus.RESEARCHED}),
    PromptStatus.RESEARCHED: frozenset({PromptStatus.SYNTHESIZING}),
    PromptStatus.SYNTHESIZING: frozenset({PromptStatus.COMPLETED, PromptStatus.REJECTED}),
    PromptStatus.COMPLETED: frozenset(),
    PromptStatus.FAILED: frozenset(),
    PromptStatus.REJECTED: frozenset(),
}

INITIAL_STATUSES = (PromptStatus.QUEUED, PromptStatus.NEEDS_REVIEW)


def is_transition_allowed(current: PromptStatus, requested: PromptStatus) -> bool:
    if requested == PromptStatus.FAILED:
        return current not in TERMINAL_STATUSES
    return requested in ALLOWED_TRANSITIONS[current]


def count_words(text: str) -> int:
    return len([w for w in re.split(r"\s+", text) if w])


def _validate_text(title: Optional[str] = None, prompt_text: Optional[str] = None,
                   priority: Optional[float] = None):
    if title is not None and not (0 < len(title.strip()) and len(title) <= MAX_TITLE_LENGTH):
        raise PromptValidationError(f"Title must be between 1 and {MAX_TITLE_LENGTH} characters")
    if prompt_text is not None and not (0 < len(prompt_text.strip()) and len(prompt_text) <= MAX_PROMPT_TEXT_LENGTH):
        raise PromptValidationError(f"Prompt text must be between 1 and {MAX_PROMPT_TEXT_LENGTH} characters")
    if priority is not None and not 0 <= priority <= 10:
        raise PromptValidationError("Priority must be between 0 and 10")


class ResearchPromptQueue:
    """
    Lifecycle of research prompts, from creation through review, research
    and synthesis. Every operation names its prompt explicitly; status
    writes are compare-and-set against the status read just before.
    """

    def __init__(self, db: GraphDBInterface, skip_step: Optional[float] = None):
        self.db = db
        self.skip_step = settings.SKIP_PRIORITY_STEP if skip_step is None else skip_step

    # --- CRUD ---

    def create_prompt(self, title: str, prompt_text: str, domain_slug: str,
                      master_domain: Optional[str] = None, priority: Optional[float] = None,
                      source: str = "manual", status: PromptStatus = PromptStatus.QUEUED) -> ResearchPrompt:
        """
        Creates a prompt, or returns the existing one when a prompt with the
        same title already targets the domain.
        """
        priority = settings.DEFAULT_PROMPT_PRIORITY if priority is None else priority
        _validate_text(title=title, prompt_text=prompt_text, priority=priority)
        status = PromptStatus(status)
        if status not in INITIAL_STATUSES:
            raise PromptValidationError(f"New prompts must start as one of {[s.value for s in INITIAL_STATUSES]}")

        try:
            record = ResearchPrompt(
                id=str(uuid.uuid4()),
                title=title,
                prompt_text=prompt_text,
                domain_slug=domain_slug,
                master_domain=master_domain or settings.DEFAULT_MASTER_DOMAIN,
                priority=priority,
                source=source,
                status=status,
                created_date=utc_now(),
            )
        except ValidationError as e:
            raise PromptValidationError(str(e)) from e
        prompt_id = self.db.create_research_prompt(record.model_dump(mode="json", exclude_none=True))
        logger.info("Research prompt created", extra={"prompt_id": prompt_id, "domain_slug": domain_slug})
        return self.get_prompt(prompt_id)

    def get_prompt(self, prompt_id: str) -> ResearchPrompt:
        record = self.db.get_research_prompt(prompt_id)
        if record is None:
            raise PromptNotFoundError(prompt_id)
        return ResearchPrompt.model_validate(record)

    def list_prompts(self, status: Optional[PromptStatus] = None, domain_slug: Optional[str] = None,
                     source: Optional[str] = None, limit: int = 20, offset: int = 0) -> List[ResearchPrompt]:
        records = self.db.list_research_prompts(
            status=PromptStatus(status).value if status else None,
            domain_slug=domain_slug,
            source=source,
            limit=limit,
            offset=offset,
        )
        return [ResearchPrompt.model_validate(r) for r in records]

    def edit_prompt(self, prompt_id: str, prompt_text: Optional[str] = None, title: Optional[str] = None,
                    priority: Optional[float] = None) -> ResearchPrompt:
        updates: Dict[str, Any] = {
            k: v for k, v in (("prompt_text", prompt_text), ("title", title), ("priority", priority)) if v is not None
        }
        if not updates:
            raise PromptValidationError("Nothing to update")
        _validate_text(title=title, prompt_text=prompt_text, priority=priority)
        prompt = self.get_prompt(prompt_id)
        if prompt.status in TERMINAL_STATUSES:
            raise PromptValidationError(f"Research prompt '{prompt_id}' is '{prompt.status.value}' and can no longer be edited")
        self.db.update_research_prompt(prompt_id, updates)
        return self.get_prompt(prompt_id)

    # --- State machine ---

    def transition(self, prompt_id: str, status: PromptStatus, error_message: Optional[str] = None,
                   updates: Optional[Dict[str, Any]] = None) -> ResearchPrompt:
        """
        Moves a prompt to ``status``. Entering 'researched' or 'completed'
        stamps the matching date; entering 'failed' requires an error message.
        Raises InvalidTransitionError when the move is not allowed from the
        stored status, including when another writer changed it first.
        """
        requested = PromptStatus(status)
        prompt = self.get_prompt(prompt_id)
        current = prompt.status
        if not is_transition_allowed(current, requested):
            raise InvalidTransitionError(prompt_id, current.value, requested.value)

        props = dict(updates or {})
        now = utc_now()
        if requested == PromptStatus.RESEARCHED:
            props["researched_date"] = now
        elif requested == PromptStatus.COMPLETED:
            props["completed_date"] = now
        elif requested == PromptStatus.FAILED:
            if not error_message:
                raise PromptValidationError("An error message is required to mark a prompt failed")
            props["error_message"] = error_message

        if not self.db.set_research_prompt_status(prompt_id, current.value, requested.value, props):
            latest = self.get_prompt(prompt_id)
            raise InvalidTransitionError(prompt_id, latest.status.value, requested.value)

        logger.info(
            "Research prompt transitioned",
            extra={"prompt_id": prompt_id, "from": current.value, "to": requested.value},
        )
        return self.get_prompt(prompt_id)

    def mark_failed(self, prompt_id: str, error_message: str) -> ResearchPrompt:
        return self.transition(prompt_id, PromptStatus.FAILED, error_message=error_message)

    def approve_prompt(self, prompt_id: str) -> ResearchPrompt:
        self._require_status(prompt_id, PromptStatus.NEEDS_REVIEW, PromptStatus.QUEUED)
        return self.transition(prompt_id, PromptStatus.QUEUED)

    def reject_prompt(self, prompt_id: str) -> ResearchPrompt:
        self._require_status(prompt_id, PromptStatus.NEEDS_REVIEW, PromptStatus.REJECTED)
        return self.transition(prompt_id, PromptStatus.REJECTED)

    def _require_status(self, prompt_id: str, expected: PromptStatus, requested: PromptStatus):
        prompt = self.get_prompt(prompt_id)
        if prompt.status != expected:
            raise InvalidTransitionError(prompt_id, prompt.status.value, requested.value)

    def approve_all(self) -> List[ResearchPrompt]:
        """Approves every prompt awaiting review. Prompts in other statuses are untouched."""
        approved = []
        while True:
            pending = self.list_prompts(status=PromptStatus.NEEDS_REVIEW, limit=100)
            if not pending:
                break
            for prompt in pending:
                approved.append(self.transition(prompt.id, PromptStatus.QUEUED))
        logger.info("Approved research prompts", extra={"count": len(approved)})
        return approved

    def prepare_research_queue(self, limit: int = 100) -> List[ResearchPrompt]:
        prepared = [
            self.transition(prompt.id, PromptStatus.READY_FOR_RESEARCH)
            for prompt in self.list_prompts(status=PromptStatus.QUEUED, limit=limit)
        ]
        logger.info("Research queue prepared", extra={"count": len(prepared)})
        return prepared

    # --- Research workflow ---

    def get_next_prompt(self) -> NextPrompt:
        record, total = self.db.next_ready_prompt()
        if record is None:
            return NextPrompt(prompt=None, remaining_count=0)
        return NextPrompt(prompt=ResearchPrompt.model_validate(record), remaining_count=max(0, total - 1))

    def save_research_result(self, prompt_id: str, research_text: str) -> ResearchPrompt:
        if not research_text or not research_text.strip():
            raise PromptValidationError("Research text must not be empty")
        return self.transition(
            prompt_id,
            PromptStatus.RESEARCHED,
            updates={"research_output": research_text, "research_word_count": count_words(research_text)},
        )

    def skip_prompt(self, prompt_id: str) -> ResearchPrompt:
        """Lowers the priority by one step, floored at zero. The status is unchanged."""
        prompt = self.get_prompt(prompt_id)
        new_priority = round(max(0.0, prompt.priority - self.skip_step), 6)
        self.db.update_research_prompt(prompt_id, {"priority": new_priority})
        logger.info(
            "Research prompt skipped",
            extra={"prompt_id": prompt_id, "previous_priority": prompt.priority, "priority": new_priority},
        )
        return prompt.model_copy(update={"priority": new_priority})

    def queue_status(self) -> QueueStatus:
        by_status = self.db.count_prompts_by_status()
        by_domain = [DomainStatusCount.model_validate(r) for r in self.db.count_prompts_by_domain_and_status()]
        return QueueStatus(
            total=sum(by_status.values()),
            by_status=by_status,
            by_domain=by_domain,
            next_up=self.get_next_prompt().prompt,
        )
