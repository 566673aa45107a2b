"""
Order Ledger — Estado de órdenes, reembolsos y devoluciones.

Solo expone las transiciones que el núcleo tiene permitido hacer:
- placed → cancelled
- refund_status hacia adelante (none → requested → processing → completed)
- alta de devoluciones

Los mutadores aceptan una conexión abierta para participar en la
transacción del llamador (ver EscalationWorkflow.resolve).
"""

import logging
import sqlite3
from typing import List, Optional

from support import codec
from support.db_service import DBService, utc_now
from support.errors import InvalidState, OrderNotFound
from support.models import REFUND_STAGES, Order, ReturnRecord

logger = logging.getLogger(__name__)


def _row_to_order(row: sqlite3.Row) -> Order:
    d = dict(row)
    d["items"] = codec.decode(d.pop("items_json"))
    return Order(**d)


class OrderLedger:
    """Lectura y transiciones guardadas sobre la tabla `orders`."""

    def __init__(self, db: DBService):
        self._db = db

    # reads

    def find(
        self, order_id: str, conn: Optional[sqlite3.Connection] = None
    ) -> Optional[Order]:
        """Orden por ID, o None si no existe."""
        if conn is not None:
            row = conn.execute(
                "SELECT * FROM orders WHERE order_id = ?", (order_id,)
            ).fetchone()
        else:
            with self._db.read() as c:
                row = c.execute(
                    "SELECT * FROM orders WHERE order_id = ?", (order_id,)
                ).fetchone()
        return _row_to_order(row) if row else None

    def get(
        self, order_id: str, conn: Optional[sqlite3.Connection] = None
    ) -> Order:
        """Orden por ID. Lanza OrderNotFound si no existe."""
        order = self.find(order_id, conn=conn)
        if order is None:
            raise OrderNotFound(f"Orden {order_id} no encontrada")
        return order

    def list_returns(self, order_id: str) -> List[ReturnRecord]:
        with self._db.read() as conn:
            rows = conn.execute(
                "SELECT * FROM returns WHERE order_id = ? ORDER BY id",
                (order_id,),
            ).fetchall()
        return [ReturnRecord(**dict(r)) for r in rows]

    # transitions

    def transition_status(
        self,
        order_id: str,
        target: str,
        conn: Optional[sqlite3.Connection] = None,
    ) -> Order:
        """
        Cambia el status de una orden.

        Solo `placed → cancelled` está permitido en este núcleo; el resto
        de los cambios de status los maneja el sistema de fulfillment.
        """
        with self._db.use(conn) as c:
            order = self.get(order_id, conn=c)

            if target != "cancelled" or order.status != "placed":
                raise InvalidState(
                    f"Transición {order.status} → {target} no permitida para {order_id}"
                )

            cursor = c.execute(
                "UPDATE orders SET status = ? WHERE order_id = ? AND status = 'placed'",
                (target, order_id),
            )
            if cursor.rowcount != 1:
                raise InvalidState(f"La orden {order_id} cambió de estado")

            logger.info(f"Orden {order_id}: {order.status} → {target}")
            return order.model_copy(update={"status": target})

    def transition_refund(
        self,
        order_id: str,
        target: str,
        allow_skip: bool = False,
        conn: Optional[sqlite3.Connection] = None,
    ) -> Order:
        """
        Avanza refund_status.

        Args:
            allow_skip: permite saltar etapas hacia adelante
                (ej: none → processing, usado por process_refund)
        """
        if target not in REFUND_STAGES:
            raise InvalidState(f"refund_status desconocido: {target}")

        with self._db.use(conn) as c:
            order = self.get(order_id, conn=c)
            current = REFUND_STAGES.index(order.refund_status)
            wanted = REFUND_STAGES.index(target)

            forward = wanted == current + 1 or (allow_skip and wanted > current)
            if not forward:
                raise InvalidState(
                    f"Reembolso {order.refund_status} → {target} no permitido para {order_id}"
                )

            cursor = c.execute(
                "UPDATE orders SET refund_status = ? WHERE order_id = ? AND refund_status = ?",
                (target, order_id, order.refund_status),
            )
            if cursor.rowcount != 1:
                raise InvalidState(f"El reembolso de {order_id} cambió de estado")

            logger.info(f"Orden {order_id}: refund {order.refund_status} → {target}")
            return order.model_copy(update={"refund_status": target})

    def create_return(
        self,
        order_id: str,
        reason: str,
        status: str = "requested",
        conn: Optional[sqlite3.Connection] = None,
    ) -> ReturnRecord:
        """Registra una devolución para una orden existente."""
        with self._db.use(conn) as c:
            self.get(order_id, conn=c)
            now = utc_now()
            cursor = c.execute(
                """
                INSERT INTO returns (order_id, reason, status, created_at)
                VALUES (?, ?, ?, ?)
                """,
                (order_id, reason, status, now),
            )
            row = c.execute(
                "SELECT * FROM returns WHERE id = ?", (cursor.lastrowid,)
            ).fetchone()
            logger.info(f"Devolución #{row['id']} creada para {order_id} ({status})")
            return ReturnRecord(**dict(row))
