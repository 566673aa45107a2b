"""
Modelos de dominio del núcleo de soporte.

Las acciones son una unión cerrada discriminada por `type`: cualquier
payload se valida contra estos modelos antes de intentar un efecto.
"""

from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from support.errors import ValidationError

OrderStatus = Literal["placed", "shipped", "delivered", "cancelled"]
RefundStatus = Literal["none", "requested", "processing", "completed"]
ReturnStatus = Literal["requested", "approved", "processing", "completed"]
EscalationStatus = Literal["pending", "approved", "rejected"]
Decision = Literal["approve", "reject"]

# Orden de avance del reembolso (solo hacia adelante)
REFUND_STAGES = ("none", "requested", "processing", "completed")


# Orders


class OrderItem(BaseModel):
    sku: str
    qty: int = Field(..., ge=1, description="Cantidad")
    price: float = Field(..., ge=0, description="Precio unitario")


class Order(BaseModel):
    order_id: str
    user_email: str
    status: OrderStatus
    items: List[OrderItem]
    tracking_number: Optional[str] = None
    created_at: str
    refund_status: RefundStatus = "none"


class ReturnRecord(BaseModel):
    id: int
    order_id: str
    reason: str
    status: ReturnStatus
    created_at: str


# Actions


class NoneAction(BaseModel):
    type: Literal["none"] = "none"


class CancelOrderAction(BaseModel):
    type: Literal["cancel_order"] = "cancel_order"
    order_id: str = Field(..., min_length=1)
    reason: str = ""


class RequestReturnAction(BaseModel):
    type: Literal["request_return"] = "request_return"
    order_id: str = Field(..., min_length=1)
    reason: str = ""


class CheckRefundAction(BaseModel):
    type: Literal["check_refund"] = "check_refund"
    order_id: str = Field(..., min_length=1)


class ProcessRefundAction(BaseModel):
    type: Literal["process_refund"] = "process_refund"
    order_id: str = Field(..., min_length=1)


# Lo que el LLM puede sugerir
SuggestedAction = Annotated[
    Union[NoneAction, CancelOrderAction, RequestReturnAction, CheckRefundAction],
    Field(discriminator="type"),
]

# Lo que puede escalarse a un agente humano
Action = Annotated[
    Union[
        NoneAction,
        CancelOrderAction,
        RequestReturnAction,
        CheckRefundAction,
        ProcessRefundAction,
    ],
    Field(discriminator="type"),
]

_action_adapter = TypeAdapter(Action)


def parse_action(payload: Any):
    """
    Valida un payload libre contra la unión cerrada de acciones.

    Raises:
        ValidationError: tipo desconocido o campos faltantes.
    """
    if isinstance(payload, BaseModel):
        payload = payload.model_dump()
    try:
        return _action_adapter.validate_python(payload)
    except PydanticValidationError as e:
        raise ValidationError(f"Acción inválida: {e.errors()}") from e


def action_order_id(action) -> Optional[str]:
    """order_id referenciado por la acción (None para `none`)."""
    return getattr(action, "order_id", None)


# Knowledge base


class KBEntry(BaseModel):
    """Entrada de la base de conocimiento. Inmutable una vez construida."""

    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    content: str
    embedding: Optional[List[float]] = None


class KBMatch(BaseModel):
    """Cita de KB que se envía al cliente (sin embedding)."""

    id: str
    title: str
    content: str
    score: float


# LLM contract


class LLMOutput(BaseModel):
    """Contrato estricto de salida del LLM."""

    intent: str
    confidence: float = Field(..., ge=0.0, le=1.0)
    response_text: str
    actions: List[SuggestedAction] = Field(default_factory=list)


class StructuredResponse(LLMOutput):
    kb_matches: List[KBMatch] = Field(default_factory=list)


# Conversations / escalations


class Message(BaseModel):
    role: str
    content: str


class AgentDecision(BaseModel):
    decision: Decision
    notes: Optional[str] = None
    result: Dict[str, Any] = Field(default_factory=dict)


class ConversationTurn(BaseModel):
    id: int
    session_id: str
    masked_user_email: str = ""
    messages: List[Message]
    llm_response: Optional[StructuredResponse] = None
    action_suggested: Optional[List[SuggestedAction]] = None
    agent_decision: Optional[AgentDecision] = None
    created_at: str


class Escalation(BaseModel):
    id: int
    session_id: str
    order_id: Optional[str] = None
    action: Action
    conversation_context: List[Dict[str, Any]] = Field(default_factory=list)
    status: EscalationStatus = "pending"
    turn_id: Optional[int] = None
    created_at: str
    resolved_at: Optional[str] = None


class ResolutionResult(BaseModel):
    success: bool
    result: Dict[str, Any] = Field(default_factory=dict)
