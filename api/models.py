"""
Pydantic models para validación de requests/responses.

Define schemas tipados para todos los endpoints de la API.
Los modelos de dominio (Order, Escalation, ConversationTurn) viven en
support/models.py y se usan directamente como response_model.
"""

from typing import Any, Dict, List, Literal, Optional

from pydantic import AliasChoices, BaseModel, Field

from support.models import Action, KBMatch, SuggestedAction


# Error Response (RFC 7807 simplificado)


class ErrorResponse(BaseModel):
    """
    Modelo de error estructurado inspirado en RFC 7807.

    Se usa como response_model en todos los errores para garantizar
    un formato consistente y predecible para los consumidores de la API.
    """

    type: str = Field(
        ..., description="Categoría del error (ej: 'validation_error', 'not_found')"
    )
    title: str = Field(..., description="Título breve del error")
    status: int = Field(..., description="Código HTTP del error")
    detail: str = Field(..., description="Descripción legible del error")

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "type": "already_resolved",
                    "title": "Escalación ya resuelta",
                    "status": 409,
                    "detail": "This escalation has already been resolved.",
                }
            ]
        }
    }


# Chat


class ChatRequest(BaseModel):
    """Request de un mensaje del cliente"""

    message: str = Field(
        ..., description="Mensaje del cliente", min_length=1, max_length=2000
    )
    order_id: Optional[str] = Field(None, description="Orden consultada")
    user_email: Optional[str] = Field(None, description="Email del cliente")
    session_id: Optional[str] = Field(
        None, description="Sesión de chat (se genera si falta)"
    )

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "message": "Can I cancel order ORD-1001?",
                    "order_id": "ORD-1001",
                    "user_email": "alice@example.com",
                    "session_id": None,
                }
            ]
        }
    }


class ChatResponse(BaseModel):
    """Respuesta estructurada del asistente"""

    intent: str = Field(..., description="Intención detectada")
    confidence: float = Field(..., description="Confianza [0-1]")
    response_text: str = Field(..., description="Texto para el cliente")
    actions: List[SuggestedAction] = Field(..., description="Acciones sugeridas")
    kb_matches: List[KBMatch] = Field(
        default_factory=list, description="Entradas de KB citadas"
    )
    session_id: str = Field(..., description="Sesión de chat")


# Escalations


class EscalateRequest(BaseModel):
    session_id: str = Field(..., min_length=1)
    order_id: Optional[str] = None
    action: Action
    conversation_context: List[Dict[str, Any]] = Field(default_factory=list)


class EscalateResponse(BaseModel):
    escalation_id: int
    status: str = "pending"
    message: str


class ApproveRequest(BaseModel):
    """Decisión del agente (acepta `decision` o `action` como nombre de campo)"""

    escalation_id: int
    decision: Literal["approve", "reject"] = Field(
        ..., validation_alias=AliasChoices("decision", "action")
    )
    agent_notes: Optional[str] = Field(None, max_length=2000)


class ApproveResponse(BaseModel):
    success: bool
    result: Dict[str, Any]


# Metrics / Health


class MetricsResponse(BaseModel):
    total_chats: int
    total_escalations: int
    bot_containment_estimate: float


class HealthResponse(BaseModel):
    """Response del health check"""

    status: str = Field(..., description="Estado del servicio")
    version: str = Field(..., description="Versión de la API")
    components: Dict[str, str] = Field(..., description="Estado de componentes")

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "status": "healthy",
                    "version": "1.0.0",
                    "components": {
                        "database": "ok",
                        "knowledge_base": "ok (6 entries, embeddings)",
                        "groq_api": "ok",
                    },
                }
            ]
        }
    }
