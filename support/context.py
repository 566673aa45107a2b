"""
Service Context — Dependencias del núcleo construidas una sola vez.

Reemplaza handles globales (conexión de DB, cliente LLM) por un objeto
explícito que la API recibe vía Depends() y pasa a cada operación.
"""

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from rag.ingest.build_index import KBIndexBuilder, create_embedder, load_knowledge_base
from rag.query.responder import GroqResponder
from rag.query.retriever import KnowledgeRetriever
from support.audit import AuditLog
from support.db_service import DBService
from support.escalation import EscalationWorkflow
from support.ledger import OrderLedger
from support.metrics import MetricsAggregator
from support.orchestrator import ConversationOrchestrator

if TYPE_CHECKING:
    from api.config import Settings

logger = logging.getLogger(__name__)


@dataclass
class ServiceContext:
    settings: "Settings"
    db: DBService
    ledger: OrderLedger
    audit: AuditLog
    retriever: KnowledgeRetriever
    responder: Optional[GroqResponder]
    orchestrator: ConversationOrchestrator
    escalations: EscalationWorkflow
    metrics: MetricsAggregator

    def close(self) -> None:
        self.retriever.close()


def assemble_context(
    settings: "Settings",
    db: DBService,
    retriever: KnowledgeRetriever,
    responder: Optional[GroqResponder] = None,
) -> ServiceContext:
    """Arma el grafo de servicios sobre componentes ya construidos."""
    ledger = OrderLedger(db)
    audit = AuditLog(db)
    escalations = EscalationWorkflow(db, ledger, audit)
    orchestrator = ConversationOrchestrator(
        retriever=retriever,
        ledger=ledger,
        audit=audit,
        responder=responder,
        timeout=settings.PROVIDER_TIMEOUT_SECONDS,
    )
    return ServiceContext(
        settings=settings,
        db=db,
        ledger=ledger,
        audit=audit,
        retriever=retriever,
        responder=responder,
        orchestrator=orchestrator,
        escalations=escalations,
        metrics=MetricsAggregator(audit, escalations),
    )


def build_service_context(settings: "Settings") -> ServiceContext:
    """
    Construye el contexto completo desde Settings.

    - Aplica el schema (idempotente)
    - Carga la KB y, si hay modelo, su índice de embeddings
    - Crea el cliente LLM solo si hay GROQ_API_KEY
    """
    db = DBService(settings.db_full_path)
    db.init_schema(settings.schema_full_path)

    entries = load_knowledge_base(settings.kb_full_path)
    embedder = create_embedder(settings.EMBEDDING_MODEL) if settings.EMBEDDINGS_ENABLED else None
    if embedder is not None:
        entries = KBIndexBuilder(embedder, settings.EMBEDDING_MODEL).build(
            entries, settings.kb_index_full_path
        )
    retriever = KnowledgeRetriever(entries, embedder=embedder, top_k=settings.KB_TOP_K)

    responder = None
    if settings.GROQ_API_KEY:
        responder = GroqResponder(
            api_key=settings.GROQ_API_KEY,
            model=settings.LLM_MODEL,
            temperature=settings.LLM_TEMPERATURE,
            timeout=settings.PROVIDER_TIMEOUT_SECONDS,
        )
    else:
        logger.warning("GROQ_API_KEY no configurada: el chat responde en modo degradado")

    return assemble_context(settings, db, retriever, responder)
