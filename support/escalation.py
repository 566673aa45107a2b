"""
Escalation Workflow — Aprobación humana de acciones que afectan al cliente.

Flujo:
1. El cliente confirma una acción sugerida → create() la deja `pending`
2. Un agente la aprueba o rechaza → resolve()
3. Si se aprueba, el efecto sobre la orden, el cambio de estado de la
   escalación y la decisión en el audit log se aplican en UNA transacción
"""

import logging
import sqlite3
from typing import Any, Dict, List, Optional

from support import codec
from support.audit import AuditLog
from support.db_service import DBService, utc_now
from support.errors import (
    AlreadyResolved,
    EscalationNotFound,
    ValidationError,
)
from support.ledger import OrderLedger
from support.models import (
    AgentDecision,
    CancelOrderAction,
    Escalation,
    ProcessRefundAction,
    RequestReturnAction,
    ResolutionResult,
    action_order_id,
    parse_action,
)

logger = logging.getLogger(__name__)

ESCALATED_MESSAGE = "Your request has been escalated to our support team for review."

_DECISIONS = {"approve": "approved", "reject": "rejected"}


def _row_to_escalation(row: sqlite3.Row) -> Escalation:
    return Escalation(
        id=row["id"],
        session_id=row["session_id"],
        order_id=row["order_id"],
        action=codec.decode(row["action_payload_json"]),
        conversation_context=codec.decode(row["conversation_context_json"]),
        status=row["status"],
        turn_id=row["turn_id"],
        created_at=row["created_at"],
        resolved_at=row["resolved_at"],
    )


class EscalationWorkflow:
    """Crea y resuelve escalaciones contra el OrderLedger."""

    def __init__(self, db: DBService, ledger: OrderLedger, audit: AuditLog):
        self._db = db
        self._ledger = ledger
        self._audit = audit

    # create

    def create(
        self,
        session_id: str,
        order_id: Optional[str],
        action: Any,
        context: Optional[List[Dict[str, Any]]] = None,
    ) -> Escalation:
        """
        Registra una escalación `pending` con snapshot del contexto.

        Args:
            session_id: Sesión de chat que origina el pedido
            order_id: Orden afectada (default: la de la acción)
            action: Payload de acción; se valida contra la unión cerrada
            context: Últimos mensajes de la conversación, se guardan tal cual
        """
        if not session_id or not session_id.strip():
            raise ValidationError("session_id es requerido")

        parsed = parse_action(action)
        referenced = action_order_id(parsed)
        if order_id and referenced and order_id != referenced:
            raise ValidationError(
                f"order_id {order_id} no coincide con la acción ({referenced})"
            )
        order_id = order_id or referenced

        snapshot = list(context or [])
        if not all(isinstance(item, dict) for item in snapshot):
            raise ValidationError("conversation_context debe ser una lista de objetos")

        now = utc_now()
        payload = parsed.model_dump(mode="json")

        with self._db.transaction() as conn:
            turn_id = self._audit.latest_turn_id(session_id, conn=conn)
            cursor = conn.execute(
                """
                INSERT INTO escalations
                    (session_id, order_id, action_type, action_payload_json,
                     conversation_context_json, status, turn_id, created_at)
                VALUES (?, ?, ?, ?, ?, 'pending', ?, ?)
                """,
                (
                    session_id,
                    order_id,
                    parsed.type,
                    codec.encode(payload),
                    codec.encode(snapshot),
                    turn_id,
                    now,
                ),
            )
            escalation_id = cursor.lastrowid

        logger.info(
            f"[{session_id}] Escalación #{escalation_id} creada ({parsed.type}, orden={order_id})"
        )
        return Escalation(
            id=escalation_id,
            session_id=session_id,
            order_id=order_id,
            action=payload,
            conversation_context=snapshot,
            status="pending",
            turn_id=turn_id,
            created_at=now,
        )

    # reads

    def get(self, escalation_id: int) -> Escalation:
        with self._db.read() as conn:
            row = conn.execute(
                "SELECT * FROM escalations WHERE id = ?", (escalation_id,)
            ).fetchone()
        if row is None:
            raise EscalationNotFound(f"Escalación #{escalation_id} no encontrada")
        return _row_to_escalation(row)

    def list_pending(self) -> List[Escalation]:
        """Escalaciones pendientes, más recientes primero."""
        with self._db.read() as conn:
            rows = conn.execute(
                """
                SELECT * FROM escalations
                WHERE status = 'pending'
                ORDER BY created_at DESC, id DESC
                """
            ).fetchall()
        return [_row_to_escalation(r) for r in rows]

    def count(self) -> int:
        with self._db.read() as conn:
            return conn.execute("SELECT COUNT(*) FROM escalations").fetchone()[0]

    # resolve

    def resolve(
        self, escalation_id: int, decision: str, notes: Optional[str] = None
    ) -> ResolutionResult:
        """
        Resuelve una escalación exactamente una vez.

        Raises:
            ValidationError: decisión distinta de approve/reject
            EscalationNotFound: no existe la escalación
            AlreadyResolved: la escalación ya no está pendiente
            OrderNotFound / InvalidState: el efecto aprobado no es aplicable
        """
        if decision not in _DECISIONS:
            raise ValidationError(f"Decisión inválida: {decision}")

        with self._db.transaction() as conn:
            row = conn.execute(
                "SELECT * FROM escalations WHERE id = ?", (escalation_id,)
            ).fetchone()
            if row is None:
                raise EscalationNotFound(f"Escalación #{escalation_id} no encontrada")

            escalation = _row_to_escalation(row)
            if escalation.status != "pending":
                raise AlreadyResolved(
                    f"Escalación #{escalation_id} ya está {escalation.status}"
                )

            if decision == "approve":
                result = self._execute(escalation, conn)
            else:
                result = {
                    "message": f"Escalation {escalation_id} rejected; no action taken"
                }

            cursor = conn.execute(
                """
                UPDATE escalations
                SET status = ?, resolved_at = ?
                WHERE id = ? AND status = 'pending'
                """,
                (_DECISIONS[decision], utc_now(), escalation_id),
            )
            if cursor.rowcount != 1:
                raise AlreadyResolved(f"Escalación #{escalation_id} resuelta en paralelo")

            agent_decision = AgentDecision(decision=decision, notes=notes, result=result)
            if escalation.turn_id is not None:
                self._audit.attach_decision(escalation.turn_id, agent_decision, conn=conn)
            else:
                logger.warning(
                    f"Escalación #{escalation_id} sin turno de origen; decisión no adjuntada"
                )

        logger.info(
            f"Escalación #{escalation_id} → {_DECISIONS[decision]}: {result['message']}"
        )
        return ResolutionResult(success=True, result=result)

    def _execute(self, escalation: Escalation, conn: sqlite3.Connection) -> Dict[str, Any]:
        """Aplica el efecto de la acción aprobada dentro de `conn`."""
        action = escalation.action
        order_id = action_order_id(action) or escalation.order_id

        if isinstance(action, CancelOrderAction):
            self._ledger.transition_status(order_id, "cancelled", conn=conn)
            return {"message": f"Order {order_id} has been cancelled"}

        if isinstance(action, RequestReturnAction):
            record = self._ledger.create_return(
                order_id, action.reason, status="approved", conn=conn
            )
            return {
                "message": f"Return request approved for order {order_id}",
                "return_id": record.id,
            }

        if isinstance(action, ProcessRefundAction):
            order = self._ledger.get(order_id, conn=conn)
            if order.refund_status == "processing":
                return {"message": f"Refund for order {order_id} is already processing"}
            self._ledger.transition_refund(
                order_id, "processing", allow_skip=True, conn=conn
            )
            return {"message": f"Refund processing initiated for order {order_id}"}

        return {"message": f"No action required for escalation {escalation.id}"}
