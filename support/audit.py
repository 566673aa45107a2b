"""
Audit Log — Registro append-only de turnos de conversación.

Cada turno guarda el email enmascarado, los mensajes, la respuesta
estructurada del LLM y (si hubo) las acciones sugeridas. Lo único que
se modifica después del alta es la decisión del agente humano.
"""

import logging
import sqlite3
from typing import List, Optional, Sequence

from support import codec
from support.db_service import DBService, utc_now
from support.errors import ValidationError
from support.models import (
    AgentDecision,
    ConversationTurn,
    Message,
    StructuredResponse,
)

logger = logging.getLogger(__name__)


def mask_email(email: Optional[str]) -> str:
    """
    Enmascara un email para guardarlo en el audit log.

    Ejemplos:
        'al@example.com'    → 'a***@example.com'
        'alice@example.com' → 'a***e@example.com'
    """
    if not email:
        return ""
    local, sep, domain = email.rpartition("@")
    if not sep:
        # Sin '@': se trata todo como parte local
        local, domain = domain, ""
    if not local:
        return f"***@{domain}"
    if len(local) <= 2:
        return f"{local[0]}***@{domain}"
    return f"{local[0]}***{local[-1]}@{domain}"


def _row_to_turn(row: sqlite3.Row) -> ConversationTurn:
    return ConversationTurn(
        id=row["id"],
        session_id=row["session_id"],
        masked_user_email=row["masked_user_email"],
        messages=codec.decode(row["messages_json"]),
        llm_response=codec.decode_optional(row["llm_response_json"]),
        action_suggested=codec.decode_optional(row["action_suggested_json"]),
        agent_decision=codec.decode_optional(row["agent_decision_json"]),
        created_at=row["created_at"],
    )


class AuditLog:
    """Store append-only sobre la tabla `conversations`."""

    def __init__(self, db: DBService):
        self._db = db

    def append(
        self,
        session_id: str,
        user_email: Optional[str],
        messages: Sequence[Message],
        response: StructuredResponse,
        action_suggested: Optional[list] = None,
    ) -> ConversationTurn:
        """Agrega un turno. El email se enmascara antes de persistir."""
        masked = mask_email(user_email)
        messages_data = [Message.model_validate(m).model_dump() for m in messages]
        response_data = response.model_dump(mode="json")
        suggested_data = (
            [a.model_dump(mode="json") for a in action_suggested]
            if action_suggested
            else None
        )
        now = utc_now()

        with self._db.transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO conversations
                    (session_id, masked_user_email, messages_json,
                     llm_response_json, action_suggested_json, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    session_id,
                    masked,
                    codec.encode(messages_data),
                    codec.encode(response_data),
                    codec.encode(suggested_data) if suggested_data else None,
                    now,
                ),
            )
            turn_id = cursor.lastrowid

        logger.info(f"[{session_id}] Turno #{turn_id} auditado ({masked or 'anónimo'})")
        return ConversationTurn(
            id=turn_id,
            session_id=session_id,
            masked_user_email=masked,
            messages=messages_data,
            llm_response=response_data,
            action_suggested=suggested_data,
            created_at=now,
        )

    def query(self, limit: int = 50) -> List[ConversationTurn]:
        """Turnos más recientes primero."""
        if limit < 1:
            raise ValidationError(f"limit debe ser >= 1 (recibido {limit})")
        with self._db.read() as conn:
            rows = conn.execute(
                """
                SELECT * FROM conversations
                ORDER BY created_at DESC, id DESC
                LIMIT ?
                """,
                (limit,),
            ).fetchall()
        return [_row_to_turn(r) for r in rows]

    def get(self, turn_id: int) -> Optional[ConversationTurn]:
        with self._db.read() as conn:
            row = conn.execute(
                "SELECT * FROM conversations WHERE id = ?", (turn_id,)
            ).fetchone()
        return _row_to_turn(row) if row else None

    def latest_turn_id(
        self, session_id: str, conn: Optional[sqlite3.Connection] = None
    ) -> Optional[int]:
        """ID del turno más reciente de una sesión (None si no hay)."""
        sql = "SELECT MAX(id) AS turn_id FROM conversations WHERE session_id = ?"
        if conn is not None:
            row = conn.execute(sql, (session_id,)).fetchone()
        else:
            with self._db.read() as c:
                row = c.execute(sql, (session_id,)).fetchone()
        return row["turn_id"]

    def attach_decision(
        self,
        turn_id: int,
        decision: AgentDecision,
        conn: Optional[sqlite3.Connection] = None,
    ) -> bool:
        """Adjunta la decisión del agente a un turno. True si el turno existía."""
        with self._db.use(conn) as c:
            cursor = c.execute(
                "UPDATE conversations SET agent_decision_json = ? WHERE id = ?",
                (codec.encode(decision.model_dump(mode="json")), turn_id),
            )
            return cursor.rowcount == 1

    # metrics

    def count_turns(self) -> int:
        with self._db.read() as conn:
            return conn.execute("SELECT COUNT(*) FROM conversations").fetchone()[0]

    def count_undecided(self) -> int:
        """Turnos sin decisión de agente (contenidos por el bot)."""
        with self._db.read() as conn:
            return conn.execute(
                "SELECT COUNT(*) FROM conversations WHERE agent_decision_json IS NULL"
            ).fetchone()[0]
