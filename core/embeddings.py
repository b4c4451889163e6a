# /core/embeddings.py

import re
from typing import List

from langchain_google_genai import GoogleGenerativeAIEmbeddings
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from core.config import settings
from core.errors import EmbeddingError
from core.logger import get_logger

logger = get_logger(__name__)

_STATUS_IN_MESSAGE = re.compile(r"\b(429|5\d\d)\b")


def is_transient_error(error: BaseException) -> bool:
    """True for rate limiting (429) and server-side (5xx) failures of a model API."""
    for attr in ("status_code", "code", "status"):
        status = getattr(error, attr, None)
        if isinstance(status, int) and not isinstance(status, bool):
            return status == 429 or 500 <= status < 600
    message = str(error).lower()
    if "rate limit" in message or "resource exhausted" in message:
        return True
    return bool(_STATUS_IN_MESSAGE.search(message))


def _log_retry(retry_state):
    logger.warning(
        "Transient model API failure, retrying",
        extra={
            "attempt": retry_state.attempt_number,
            "error": str(retry_state.outcome.exception()),
        },
    )


def transient_retry(max_attempts: int | None = None, wait=None):
    """
    Bounded retry for calls to external model services. Only transient
    failures are retried; anything else propagates on the first attempt.
    """
    if wait is None:
        wait = wait_exponential(multiplier=settings.RETRY_INITIAL_DELAY, exp_base=2, min=settings.RETRY_INITIAL_DELAY)
    return retry(
        reraise=True,
        stop=stop_after_attempt(max_attempts or settings.RETRY_MAX_ATTEMPTS),
        wait=wait,
        retry=retry_if_exception(is_transient_error),
        before_sleep=_log_retry,
    )


class EmbeddingService:
    """
    Text -> fixed-dimension vector, single and batch. Wraps the Gemini
    embedding model with the transient-failure retry policy.
    """

    def __init__(self, embeddings_model=None, dimensions: int | None = None, retry_policy=None):
        self.dimensions = dimensions or settings.EMBEDDING_DIMENSIONS
        self.embeddings_model = embeddings_model or GoogleGenerativeAIEmbeddings(model=settings.EMBEDDING_MODEL)
        self._retry = retry_policy or transient_retry()

    def _check(self, vector) -> List[float]:
        if not vector:
            raise EmbeddingError("Embedding response missing values")
        return list(vector)

    def embed_for_storage(self, text: str) -> List[float]:
        call = self._retry(lambda: self.embeddings_model.embed_query(
            text, task_type="RETRIEVAL_DOCUMENT", output_dimensionality=self.dimensions
        ))
        return self._check(call())

    def embed_query(self, text: str) -> List[float]:
        call = self._retry(lambda: self.embeddings_model.embed_query(
            text, task_type="RETRIEVAL_QUERY", output_dimensionality=self.dimensions
        ))
        return self._check(call())

    def embed_batch(self, texts: List[str]) -> List[List[float]]:
        if not texts:
            return []
        call = self._retry(lambda: self.embeddings_model.embed_documents(
            texts, task_type="RETRIEVAL_DOCUMENT", output_dimensionality=self.dimensions
        ))
        vectors = call()
        if not vectors or len(vectors) != len(texts):
            raise EmbeddingError(f"Expected {len(texts)} embeddings, got {len(vectors or [])}")
        return [self._check(v) for v in vectors]
