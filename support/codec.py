"""
Codec — Serialización versionada de estructuras anidadas.

Las columnas TEXT que guardan items, mensajes, payloads de acciones o
contexto de conversación usan el sobre `{"v": 1, "data": ...}` para
detectar drift de schema en lugar de decodificar silenciosamente.
"""

import json
from typing import Any, Optional

from support.errors import PersistenceError

CODEC_VERSION = 1


def encode(value: Any) -> str:
    """Serializa un valor JSON-compatible dentro del sobre versionado."""
    return json.dumps({"v": CODEC_VERSION, "data": value}, ensure_ascii=False)


def decode(text: str) -> Any:
    """
    Decodifica un valor producido por `encode`.

    Raises:
        PersistenceError: si el texto no es JSON, no tiene sobre o la
            versión no es soportada.
    """
    try:
        envelope = json.loads(text)
    except (TypeError, json.JSONDecodeError) as e:
        raise PersistenceError(f"Payload persistido no es JSON válido: {e}") from e

    if not isinstance(envelope, dict) or set(envelope) != {"v", "data"}:
        raise PersistenceError("Payload persistido sin sobre de versión")

    if envelope["v"] != CODEC_VERSION:
        raise PersistenceError(f"Versión de payload no soportada: {envelope['v']}")

    return envelope["data"]


def decode_optional(text: Optional[str]) -> Any:
    """Como `decode`, pero NULL en la DB se mantiene como None."""
    if text is None:
        return None
    return decode(text)
