"""
Retriever - Recupera entradas relevantes de la base de conocimiento.

Este módulo:
1. Busca por similitud coseno entre embeddings (si hay embedder e índice)
2. Cae a búsqueda por keywords si no hay embeddings o el proveedor falla
3. Retorna las entradas como KBMatch para citar en la respuesta
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import List, Optional, Sequence

import numpy as np

from support.errors import ProviderError
from support.models import KBEntry, KBMatch

logger = logging.getLogger(__name__)

DEFAULT_TOP_K = 3


def cosine_similarity(a: Optional[Sequence[float]], b: Optional[Sequence[float]]) -> float:
    """
    Similitud coseno (a·b)/(‖a‖‖b‖).

    Devuelve 0 si algún vector falta, está vacío, tiene distinta
    longitud o norma cero.
    """
    if a is None or b is None:
        return 0.0

    va = np.asarray(a, dtype=np.float64).ravel()
    vb = np.asarray(b, dtype=np.float64).ravel()
    if va.size == 0 or vb.size == 0 or va.shape != vb.shape:
        return 0.0

    norm = np.linalg.norm(va) * np.linalg.norm(vb)
    if norm == 0:
        return 0.0
    return float(np.dot(va, vb) / norm)


class KnowledgeRetriever:
    """Ranking de KBEntry por embeddings con fallback léxico."""

    def __init__(
        self,
        entries: Sequence[KBEntry],
        embedder=None,
        top_k: int = DEFAULT_TOP_K,
    ):
        """
        Args:
            entries: Base de conocimiento (inmutable, orden original = desempate)
            embedder: Objeto con `encode(texts, convert_to_numpy=True)`
                (ej: SentenceTransformer). None = solo keywords.
            top_k: Cantidad máxima de entradas devueltas
        """
        self.entries: tuple[KBEntry, ...] = tuple(entries)
        self.embedder = embedder
        self.top_k = top_k
        self._executor = (
            ThreadPoolExecutor(max_workers=4, thread_name_prefix="kb-embed")
            if embedder is not None
            else None
        )

        logger.info(
            f"Retriever listo ({len(self.entries)} entradas, "
            f"modo={'embeddings' if self.has_embeddings else 'keywords'})"
        )

    @property
    def has_embeddings(self) -> bool:
        return self.embedder is not None and any(
            e.embedding for e in self.entries
        )

    def search(self, query: str, timeout: Optional[float] = None) -> List[KBMatch]:
        """
        Devuelve hasta top_k entradas, más relevante primero.

        Nunca propaga fallas del proveedor de embeddings: en ese caso
        usa la búsqueda por keywords solo para esta llamada.
        """
        if self.has_embeddings:
            try:
                return self._embedding_search(query, timeout)
            except ProviderError as e:
                logger.warning(f"Búsqueda por embeddings falló, uso keywords: {e}")

        return self.keyword_search(query)

    def _embedding_search(self, query: str, timeout: Optional[float]) -> List[KBMatch]:
        query_embedding = self._embed_query(query, timeout)

        scored = [
            (cosine_similarity(query_embedding, entry.embedding), entry)
            for entry in self.entries
        ]
        # sorted() es estable: empates respetan el orden original de la KB
        scored = sorted(scored, key=lambda pair: pair[0], reverse=True)

        return [_to_match(entry, score) for score, entry in scored[: self.top_k]]

    def _embed_query(self, query: str, timeout: Optional[float]) -> List[float]:
        if timeout is not None and timeout <= 0:
            raise ProviderError("Sin tiempo restante para embeddings")

        future = self._executor.submit(
            self.embedder.encode, [query], convert_to_numpy=True
        )
        try:
            vectors = future.result(timeout=timeout)
        except FutureTimeoutError as e:
            future.cancel()
            raise ProviderError(f"Timeout generando embedding ({timeout}s)") from e
        except Exception as e:
            raise ProviderError(f"Error del proveedor de embeddings: {e}") from e

        return np.asarray(vectors[0], dtype=np.float64).tolist()

    def keyword_search(self, query: str) -> List[KBMatch]:
        """Score = 2 si el título contiene la query + 1 si el contenido la contiene."""
        query_lower = query.lower()

        scored = []
        for entry in self.entries:
            relevance = (2 if query_lower in entry.title.lower() else 0) + (
                1 if query_lower in entry.content.lower() else 0
            )
            if relevance > 0:
                scored.append((relevance, entry))

        scored = sorted(scored, key=lambda pair: pair[0], reverse=True)
        return [_to_match(entry, score) for score, entry in scored[: self.top_k]]

    def format_context(self, matches: List[KBMatch]) -> str:
        """Formatea las entradas recuperadas para el prompt del LLM."""
        if not matches:
            return "No relevant knowledge base entries were found."

        return "\n".join(
            f"{i}. [{m.id}] {m.title}: {m.content}" for i, m in enumerate(matches, 1)
        )

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)


def _to_match(entry: KBEntry, score: float) -> KBMatch:
    return KBMatch(id=entry.id, title=entry.title, content=entry.content, score=float(score))
