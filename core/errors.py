# /core/errors.py

class KnowledgeCoreError(Exception):
    """Base class for every caller-visible failure. ``message`` is safe to show."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class DomainNotFoundError(KnowledgeCoreError):
    def __init__(self, domain_slug: str):
        super().__init__(f"Domain with slug '{domain_slug}' not found")
        self.domain_slug = domain_slug


class PromptNotFoundError(KnowledgeCoreError):
    def __init__(self, prompt_id: str):
        super().__init__(f"Research prompt '{prompt_id}' not found")
        self.prompt_id = prompt_id


class RunNotFoundError(KnowledgeCoreError):
    def __init__(self, run_id: str):
        super().__init__(f"Synthesis run '{run_id}' not found")
        self.run_id = run_id


class NodeNotFoundError(KnowledgeCoreError):
    def __init__(self, node_id: str):
        super().__init__(f"KnowledgeNode with id '{node_id}' not found")
        self.node_id = node_id


class NodeValidationError(KnowledgeCoreError):
    pass


class InvalidTransitionError(KnowledgeCoreError):
    """Raised when a research prompt cannot move from its current status to the requested one."""

    def __init__(self, prompt_id: str, current: str, requested: str):
        super().__init__(
            f"Research prompt '{prompt_id}' cannot transition from '{current}' to '{requested}'"
        )
        self.prompt_id = prompt_id
        self.current = current
        self.requested = requested


class PromptValidationError(KnowledgeCoreError):
    pass


class SynthesisError(KnowledgeCoreError):
    """A synthesis pass failed after its run record was created."""

    def __init__(self, message: str, run_id: str | None = None):
        super().__init__(message)
        self.run_id = run_id


class EmbeddingError(KnowledgeCoreError):
    pass
