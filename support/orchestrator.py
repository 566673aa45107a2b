"""
Orchestrator — Punto de entrada del pipeline conversacional.

Flujo:
1. Buscar entradas relevantes en la KB (embeddings o keywords)
2. Si viene order_id, leer la orden del ledger
3. Construir el prompt con contexto (KB + orden)
4. Llamar al LLM y validar el contrato JSON
5. Si el proveedor falla o la salida no valida → respuesta degradada fija
6. Registrar SIEMPRE un turno en el audit log
"""

import json
import logging
import time
import uuid
from typing import List, Optional

from pydantic import ValidationError as PydanticValidationError

from support.audit import AuditLog
from support.errors import ProviderError, ProviderParseError, ValidationError
from support.ledger import OrderLedger
from support.models import (
    KBMatch,
    LLMOutput,
    Message,
    NoneAction,
    Order,
    StructuredResponse,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 15.0

FALLBACK_TEXT = (
    "I apologize, but our AI system is currently unavailable. "
    "Please contact our human support team for assistance."
)
PARSE_ERROR_TEXT = (
    "I apologize, but I encountered an issue processing your request. "
    "Could you please rephrase your question?"
)

_SYSTEM_PROMPT_HEADER = """\
You are a helpful customer support assistant for an e-commerce platform. \
Your role is to help customers with order status, returns, refunds, \
cancellations, and general FAQs.

IMPORTANT: You must respond with valid JSON only. Do not include any text \
before or after the JSON."""

_CONTRACT = """\
Respond with JSON in this exact format:
{
  "intent": "<detected_intent>",
  "confidence": 0.0-1.0,
  "response_text": "<helpful_response>",
  "actions": [{"type": "none"} or {"type": "cancel_order", "order_id": "...", "reason": "..."} or {"type": "request_return", "order_id": "...", "reason": "..."} or {"type": "check_refund", "order_id": "..."}]
}

Rules:
- Always cite KB sources (by their [id]) when using policy information
- Never fabricate tracking numbers or delivery dates
- If information is missing, ask clarifying questions
- Only suggest actions for valid requests with proper order info
- Destructive actions (cancel, return, refund) require explicit customer confirmation"""


# Prompt


def build_order_summary(order: Order) -> str:
    """Resumen compacto de la orden para el prompt."""
    items = ", ".join(f"{item.sku} (qty: {item.qty})" for item in order.items)
    return (
        f"Order ID: {order.order_id}\n"
        f"Status: {order.status}\n"
        f"Items: {items}\n"
        f"Tracking: {order.tracking_number or 'Not available yet'}\n"
        f"Created: {order.created_at}\n"
        f"Refund Status: {order.refund_status}"
    )


def build_grounded_prompt(kb_context: str, order: Optional[Order] = None) -> str:
    """System prompt con la KB recuperada y, si hay, la orden."""
    parts = [_SYSTEM_PROMPT_HEADER, f"Available Knowledge Base:\n{kb_context}"]
    if order is not None:
        parts.append(f"Order Information:\n{build_order_summary(order)}")
    parts.append(_CONTRACT)
    return "\n\n".join(parts)


# Contract parsing


def parse_llm_output(raw: str) -> LLMOutput:
    """
    Parsea y valida la respuesta del LLM contra el contrato.

    Raises:
        ProviderParseError: no es JSON, no es un objeto o no valida
    """
    # Limpiar posible markdown
    clean = raw.strip()
    if clean.startswith("```"):
        clean = clean.strip("`").strip()
        if clean.lower().startswith("json"):
            clean = clean[4:].strip()

    try:
        data = json.loads(clean)
    except json.JSONDecodeError as e:
        raise ProviderParseError(f"Respuesta del LLM no es JSON: {e}") from e

    if not isinstance(data, dict):
        raise ProviderParseError("Respuesta del LLM no es un objeto JSON")

    try:
        return LLMOutput.model_validate(data)
    except PydanticValidationError as e:
        raise ProviderParseError(f"Respuesta del LLM no cumple el contrato: {e}") from e


def fallback_response(kb_matches: List[KBMatch]) -> StructuredResponse:
    """Respuesta degradada cuando el proveedor no está disponible."""
    return StructuredResponse(
        intent="fallback",
        confidence=0.5,
        response_text=FALLBACK_TEXT,
        actions=[NoneAction()],
        kb_matches=kb_matches,
    )


def parse_error_response(kb_matches: List[KBMatch]) -> StructuredResponse:
    """Respuesta degradada cuando la salida del LLM no valida."""
    return StructuredResponse(
        intent="parse_error",
        confidence=0.1,
        response_text=PARSE_ERROR_TEXT,
        actions=[NoneAction()],
        kb_matches=kb_matches,
    )


class ConversationOrchestrator:
    """Pipeline RAG + LLM con fallback determinístico y auditoría."""

    def __init__(
        self,
        retriever,
        ledger: OrderLedger,
        audit: AuditLog,
        responder=None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ):
        """
        Args:
            retriever: KnowledgeRetriever
            ledger: OrderLedger (solo lectura desde aquí)
            audit: AuditLog
            responder: GroqResponder, o None si no hay API key (modo degradado)
            timeout: Presupuesto total por defecto para retrieval + LLM
        """
        self._retriever = retriever
        self._ledger = ledger
        self._audit = audit
        self._responder = responder
        self._timeout = timeout

        logger.info(
            f"ConversationOrchestrator inicializado "
            f"(LLM={'on' if responder else 'off'}, timeout={timeout}s)"
        )

    def handle(
        self,
        message: str,
        order_id: Optional[str] = None,
        user_email: Optional[str] = None,
        session_id: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> StructuredResponse:
        """
        Procesa un mensaje del cliente y devuelve la respuesta estructurada.

        Args:
            message: Texto del cliente
            order_id: Orden sobre la que pregunta (opcional)
            user_email: Email del cliente; solo se persiste enmascarado
            session_id: Sesión de chat (default: UUID nuevo)
            timeout: Presupuesto en segundos para retrieval + LLM
        """
        if not message or not message.strip():
            raise ValidationError("El mensaje está vacío")

        message = message.strip()
        session_id = session_id or str(uuid.uuid4())
        budget = self._timeout if timeout is None else timeout
        deadline = time.monotonic() + budget

        logger.info(f"[{session_id}] Mensaje: {message[:60]}")

        # 1. KB
        kb_matches = self._retriever.search(message, timeout=_remaining(deadline))

        # 2. Orden
        order = None
        if order_id:
            order = self._ledger.find(order_id)
            if order is None:
                logger.info(f"[{session_id}] Orden {order_id} no encontrada; sin contexto")

        # 3-5. LLM + validación
        response = self._respond(session_id, message, kb_matches, order, deadline)

        # 6. Auditoría (exactamente una por invocación)
        suggested = [a for a in response.actions if a.type != "none"]
        self._audit.append(
            session_id=session_id,
            user_email=user_email,
            messages=[Message(role="user", content=message)],
            response=response,
            action_suggested=suggested or None,
        )

        return response

    def _respond(
        self,
        session_id: str,
        message: str,
        kb_matches: List[KBMatch],
        order: Optional[Order],
        deadline: float,
    ) -> StructuredResponse:
        if self._responder is None:
            logger.warning(f"[{session_id}] LLM no configurado; respuesta degradada")
            return fallback_response(kb_matches)

        prompt = build_grounded_prompt(
            self._retriever.format_context(kb_matches), order
        )

        try:
            raw = self._responder.complete_json(
                prompt, message, timeout=_remaining(deadline)
            )
            output = parse_llm_output(raw)
        except ProviderParseError as e:
            logger.warning(f"[{session_id}] Salida del LLM inválida: {e}")
            return parse_error_response(kb_matches)
        except ProviderError as e:
            logger.warning(f"[{session_id}] Proveedor no disponible: {e}")
            return fallback_response(kb_matches)

        logger.info(
            f"[{session_id}] Intent: {output.intent} (confidence: {output.confidence:.2f})"
        )
        return StructuredResponse(
            intent=output.intent,
            confidence=output.confidence,
            response_text=output.response_text,
            actions=output.actions or [NoneAction()],
            kb_matches=kb_matches,
        )


def _remaining(deadline: float) -> float:
    return deadline - time.monotonic()
