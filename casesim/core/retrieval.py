"""Knowledge retrieval for persona prompts.

Two rankers share one contract: lexical term-frequency scoring and vector
cosine similarity. Selection follows ``RETRIEVAL_STRATEGY``:

- ``lexical``: always term frequency
- ``vector``: embeddings only; an embedding failure yields an empty result
- ``auto``: vector when the embeddings provider has credentials and the case
  has stored vectors, lexical otherwise or when the query embedding fails

Ties keep ingestion order. Queries never raise on "nothing matched".
"""

import logging
import re

import numpy as np

from casesim.core.config import Settings
from casesim.core.errors import ConfigurationMissing, ProviderUnavailable
from casesim.core.logging import get_logger, log_with_context
from casesim.core.providers.router import ProviderRouter
from casesim.core.schemas_knowledge import KnowledgeChunk, RankedChunk, RetrievalResult
from casesim.db.knowledge import KnowledgeStore

logger = get_logger(__name__)

STRATEGIES = ("auto", "vector", "lexical")

_TOKEN_RE = re.compile(r"[a-z0-9]+")

STOPWORDS = frozenset(
    {
        "a", "an", "and", "are", "as", "at", "be", "by", "can", "did", "do", "does",
        "for", "from", "has", "have", "how", "i", "in", "is", "it", "its", "me", "my",
        "of", "on", "or", "please", "so", "that", "the", "their", "there", "this",
        "to", "was", "we", "were", "what", "when", "where", "which", "who", "with",
        "you", "your",
    }
)


def tokenize(text: str) -> list[str]:
    """Distinct lowercase query terms in first-seen order, without stopwords."""
    seen: list[str] = []
    for token in _TOKEN_RE.findall((text or "").lower()):
        if token not in STOPWORDS and token not in seen:
            seen.append(token)
    return seen


def lexical_score(content: str, terms: list[str]) -> float:
    """Sum of whole-word, case-insensitive occurrences of each term."""
    lowered = content.lower()
    return float(sum(len(re.findall(rf"\b{re.escape(term)}\b", lowered)) for term in terms))


def rank_lexical(chunks: list[KnowledgeChunk], query: str, top_k: int) -> list[RankedChunk]:
    terms = tokenize(query)
    if not terms:
        return []

    scored = [(lexical_score(chunk.content, terms), chunk) for chunk in chunks]
    matching = [(score, chunk) for score, chunk in scored if score > 0]
    matching.sort(key=lambda item: -item[0])
    return [_ranked(chunk, score) for score, chunk in matching[:top_k]]


def rank_vector(chunks: list[KnowledgeChunk], query_vector: list[float], top_k: int) -> list[RankedChunk]:
    """Rank chunks with stored vectors by cosine similarity to the query vector."""
    query = np.asarray(query_vector, dtype=float)
    candidates = [c for c in chunks if c.embedding and len(c.embedding) == query.shape[0]]
    if not candidates or not np.any(query):
        return []

    matrix = np.asarray([c.embedding for c in candidates], dtype=float)
    norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
    norms[norms == 0] = np.inf
    scores = (matrix @ query) / norms

    # Stable sort keeps ingestion order among equal scores
    order = np.argsort(-scores, kind="stable")[:top_k]
    return [_ranked(candidates[i], float(scores[i])) for i in order]


def _ranked(chunk: KnowledgeChunk, score: float) -> RankedChunk:
    return RankedChunk(id=chunk.id, content=chunk.content, score=score, metadata=chunk.metadata)


class KnowledgeRetriever:
    """Ranks a case's knowledge chunks against a query."""

    def __init__(self, store: KnowledgeStore, router: ProviderRouter, settings: Settings):
        self.store = store
        self.router = router
        self.default_top_k = settings.RETRIEVAL_TOP_K
        strategy = (settings.RETRIEVAL_STRATEGY or "auto").lower()
        if strategy not in STRATEGIES:
            logger.warning(f"Unknown retrieval strategy {strategy}, using auto")
            strategy = "auto"
        self.strategy = strategy

    def query(self, case_id: str, text: str, top_k: int | None = None) -> RetrievalResult:
        """
        Rank knowledge chunks of a case for a query.

        Args:
            case_id: Canonical case id
            text: Query text, usually the latest learner message
            top_k: Max results (defaults to RETRIEVAL_TOP_K)

        Returns:
            RetrievalResult naming the strategy used; empty results when nothing matches
        """
        top_k = top_k or self.default_top_k
        chunks = self.store.list_chunks(case_id)

        if not text or not text.strip() or not chunks:
            return RetrievalResult(strategy="lexical" if self.strategy != "vector" else "vector")

        if self.strategy == "lexical":
            return RetrievalResult(strategy="lexical", results=rank_lexical(chunks, text, top_k))

        has_vectors = any(c.embedding for c in chunks)
        if self.strategy == "auto" and not (has_vectors and self.router.has_credentials("embeddings")):
            return RetrievalResult(strategy="lexical", results=rank_lexical(chunks, text, top_k))

        try:
            query_vector = self.router.call_embeddings([text])[0].embedding
        except (ProviderUnavailable, ConfigurationMissing) as e:
            log_with_context(
                logger,
                logging.WARNING,
                f"Query embedding failed, {'using lexical ranking' if self.strategy == 'auto' else 'no results'}: {e.message}",
                case_id=case_id,
                code=e.code.value,
            )
            if self.strategy == "vector":
                return RetrievalResult(strategy="vector")
            return RetrievalResult(strategy="lexical", results=rank_lexical(chunks, text, top_k))

        return RetrievalResult(strategy="vector", results=rank_vector(chunks, query_vector, top_k))
