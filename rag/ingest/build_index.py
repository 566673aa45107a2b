"""
Build Index - Construye el índice de embeddings de la base de conocimiento.

Este módulo:
1. Carga la KB desde JSON (la crea con las políticas por defecto si falta)
2. Genera embeddings por entrada usando sentence-transformers
3. Cachea el índice en disco y lo reutiliza si el modelo no cambió

Se ejecuta una vez al startup; el índice es de solo lectura después.
"""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

import numpy as np

from support.models import KBEntry

logger = logging.getLogger(__name__)

INDEX_VERSION = 1

DEFAULT_KB: List[Dict[str, str]] = [
    {
        "id": "shipping-policy",
        "title": "Shipping Policy",
        "content": "We offer free standard shipping on orders over $50. Standard shipping takes 3-5 business days. Express shipping (1-2 business days) costs $9.99. We ship Monday-Friday, excluding holidays.",
    },
    {
        "id": "return-policy",
        "title": "Return Policy",
        "content": "Items can be returned within 30 days of delivery for a full refund. Items must be unused and in original packaging. Return shipping is free for defective items, $5.99 for other returns.",
    },
    {
        "id": "refund-policy",
        "title": "Refund Policy",
        "content": "Refunds are processed within 3-5 business days after we receive your return. Refunds go back to the original payment method. Shipping charges are non-refundable unless the item was defective.",
    },
    {
        "id": "order-cancellation",
        "title": "Order Cancellation",
        "content": "Orders can be cancelled for free if they haven't shipped yet. Once an order has shipped, it cannot be cancelled but can be returned after delivery following our return policy.",
    },
    {
        "id": "tracking-info",
        "title": "Order Tracking",
        "content": "You'll receive a tracking number via email once your order ships. You can track your package on our website or the carrier's website. Delivery confirmation is available upon request.",
    },
    {
        "id": "size-exchanges",
        "title": "Size Exchanges",
        "content": "Free size exchanges are available within 30 days. The original item must be returned in new condition. We'll send the new size once we receive the return.",
    },
]


def load_knowledge_base(kb_path: Path) -> List[KBEntry]:
    """
    Carga las entradas de la KB.

    Si el archivo no existe, lo crea con DEFAULT_KB.
    """
    kb_path = Path(kb_path)
    if not kb_path.exists():
        logger.info(f"KB no encontrada, creando default en {kb_path}")
        kb_path.parent.mkdir(parents=True, exist_ok=True)
        with open(kb_path, "w", encoding="utf-8") as f:
            json.dump(DEFAULT_KB, f, indent=2, ensure_ascii=False)

    with open(kb_path, "r", encoding="utf-8") as f:
        raw = json.load(f)

    entries = [
        KBEntry(id=item["id"], title=item["title"], content=item["content"])
        for item in raw
    ]
    logger.info(f"{len(entries)} entradas de KB cargadas desde {kb_path}")
    return entries


def create_embedder(model_name: str):
    """
    Carga el modelo de embeddings.

    Devuelve None si no se puede cargar: el retriever opera
    solo con keywords.
    """
    try:
        from sentence_transformers import SentenceTransformer

        logger.info(f"Cargando modelo de embeddings: {model_name}")
        return SentenceTransformer(model_name)
    except Exception as e:
        logger.warning(f"No se pudo cargar el modelo de embeddings ({e}); modo keywords")
        return None


class KBIndexBuilder:
    """Genera y cachea los embeddings de la KB."""

    def __init__(self, embedder, model_name: str):
        """
        Args:
            embedder: Objeto con `encode(texts, convert_to_numpy=True)`
            model_name: Nombre del modelo (se guarda en el índice para invalidarlo)
        """
        self.embedder = embedder
        self.model_name = model_name

    def generate_embeddings(self, entries: List[KBEntry]) -> List[KBEntry]:
        """
        Embebe "<title>: <content>" por entrada.

        Una entrada cuyo embedding falla queda con embedding=None.
        """
        indexed = []
        for entry in entries:
            try:
                vector = self.embedder.encode(
                    [f"{entry.title}: {entry.content}"], convert_to_numpy=True
                )[0]
                embedding = np.asarray(vector, dtype=np.float64).tolist()
            except Exception as e:
                logger.error(f"Error generando embedding para {entry.id}: {e}")
                embedding = None
            indexed.append(entry.model_copy(update={"embedding": embedding}))

        ok = sum(1 for e in indexed if e.embedding)
        logger.info(f"Embeddings generados: {ok}/{len(indexed)}")
        return indexed

    def load_cached(
        self, entries: List[KBEntry], index_path: Path
    ) -> Optional[List[KBEntry]]:
        """Reutiliza el índice en disco si coincide modelo y entradas."""
        index_path = Path(index_path)
        if not index_path.exists():
            return None

        try:
            with open(index_path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Índice de KB ilegible ({e}); se regenera")
            return None

        if data.get("version") != INDEX_VERSION or data.get("model_name") != self.model_name:
            logger.info("Índice de KB desactualizado (modelo/versión); se regenera")
            return None

        cached = {item["id"]: item for item in data.get("entries", [])}
        if set(cached) != {e.id for e in entries}:
            logger.info("Índice de KB no coincide con las entradas; se regenera")
            return None

        return [
            entry.model_copy(update={"embedding": cached[entry.id].get("embedding")})
            for entry in entries
        ]

    def save(self, entries: List[KBEntry], index_path: Path) -> Dict:
        """Guarda el índice en JSON y devuelve su metadata."""
        index_path = Path(index_path)
        index_path.parent.mkdir(parents=True, exist_ok=True)

        data = {
            "version": INDEX_VERSION,
            "created_at": datetime.now(timezone.utc).isoformat(),
            "model_name": self.model_name,
            "total_entries": len(entries),
            "entries": [e.model_dump() for e in entries],
        }
        with open(index_path, "w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False)

        logger.info(f"Índice de KB guardado en {index_path}")
        return {k: v for k, v in data.items() if k != "entries"}

    def build(self, entries: List[KBEntry], index_path: Optional[Path] = None) -> List[KBEntry]:
        """Devuelve las entradas con embedding (desde caché o generadas)."""
        if index_path is not None:
            cached = self.load_cached(entries, index_path)
            if cached is not None:
                logger.info(f"Índice de KB reutilizado desde {index_path}")
                return cached

        indexed = self.generate_embeddings(entries)

        if index_path is not None:
            try:
                self.save(indexed, index_path)
            except OSError as e:
                logger.warning(f"No se pudo guardar el índice de KB: {e}")
        return indexed


if __name__ == "__main__":
    """Reconstruir el índice de la KB"""
    import sys

    project_root = Path(__file__).resolve().parent.parent.parent
    sys.path.insert(0, str(project_root))

    from api.config import get_settings

    settings = get_settings()
    kb_entries = load_knowledge_base(settings.kb_full_path)
    embedder = create_embedder(settings.EMBEDDING_MODEL)
    if embedder is None:
        print("❌ No se pudo cargar el modelo de embeddings")
        sys.exit(1)

    builder = KBIndexBuilder(embedder, settings.EMBEDDING_MODEL)
    indexed = builder.generate_embeddings(kb_entries)
    metadata = builder.save(indexed, settings.kb_index_full_path)

    print(f"\n📊 Resumen:")
    print(f"   - Entradas indexadas: {metadata['total_entries']}")
    print(f"   - Modelo usado: {metadata['model_name']}")
