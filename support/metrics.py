"""
Metrics — Contadores derivados del audit log y de las escalaciones.
"""

from typing import Dict

from support.audit import AuditLog
from support.escalation import EscalationWorkflow


class MetricsAggregator:
    def __init__(self, audit: AuditLog, escalations: EscalationWorkflow):
        self._audit = audit
        self._escalations = escalations

    def snapshot(self) -> Dict:
        """
        Returns:
            Dict con total_chats, total_escalations y containment_rate
            (turnos sin decisión de agente / total; 0 si no hay turnos).
        """
        total_chats = self._audit.count_turns()
        total_escalations = self._escalations.count()
        undecided = self._audit.count_undecided()

        containment_rate = (undecided / total_chats) if total_chats > 0 else 0.0

        return {
            "total_chats": total_chats,
            "total_escalations": total_escalations,
            "containment_rate": containment_rate,
        }
