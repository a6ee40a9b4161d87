"""
Embedding-based context retrieval for long source documents.
"""
import logging
from typing import List, Sequence

import numpy as np

logger = logging.getLogger(__name__)


def chunk_text(text: str, size: int = 1500, overlap: int = 200) -> List[str]:
    """Split text into overlapping character windows."""
    if not text:
        return []
    step = max(1, size - overlap)
    return [text[start:start + size] for start in range(0, len(text), step) if text[start:start + size].strip()]


def similarity_scores(chunk_vectors: Sequence[Sequence[float]], query_vector: Sequence[float]) -> np.ndarray:
    """Cosine similarity of every chunk vector with the query vector."""
    matrix = np.asarray(chunk_vectors, dtype=float)
    query = np.asarray(query_vector, dtype=float)
    norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query) + 1e-8
    return (matrix @ query) / norms


class ContextRetriever:
    """Picks the document chunks most similar to a query."""

    def __init__(self, ai_client, top_k: int = 4, chunk_size: int = 1500, overlap: int = 200):
        self.ai_client = ai_client
        self.top_k = top_k
        self.chunk_size = chunk_size
        self.overlap = overlap

    async def retrieve(self, text: str, query: str) -> str:
        """
        Return the top-k chunks of text most relevant to query, in document order.

        Any failure degrades to an empty string so callers can carry on
        without context.
        """
        chunks = chunk_text(text, self.chunk_size, self.overlap)
        if not chunks or not query:
            return ""
        if len(chunks) <= self.top_k:
            return text

        try:
            vectors = await self.ai_client.embed(chunks + [query])
        except Exception as e:
            logger.warning(f"Context retrieval failed, continuing without context: {e}")
            return ""

        if len(vectors) != len(chunks) + 1:
            logger.warning(f"Embedding count mismatch ({len(vectors)} for {len(chunks) + 1} inputs), skipping context")
            return ""

        try:
            scores = similarity_scores(vectors[:-1], vectors[-1])
        except ValueError as e:
            logger.warning(f"Unusable embeddings, skipping context: {e}")
            return ""

        # stable sort keeps the earlier chunk first on equal scores
        ranked = np.argsort(-scores, kind="stable")[:self.top_k]
        selected = sorted(int(i) for i in ranked)
        logger.debug(f"Selected chunks {selected} of {len(chunks)} for query '{query}'")
        return "\n...\n".join(chunks[i] for i in selected)
