"""
FastAPI Application - API REST del asistente de soporte e-commerce
- Settings centralizado (Pydantic BaseSettings via config.py)
- ServiceContext inyectado con Depends()
- HTTP Status Codes correctos + Error Handler global
- Async con asyncio.to_thread para operaciones bloqueantes

Endpoints:
- GET  /                     → Raíz informativa
- GET  /health               → Health check
- POST /api/chat             → Mensaje del cliente (RAG + LLM)
- GET  /api/orders/{id}      → Detalle de una orden
- POST /api/escalate         → Escalar una acción a un agente humano
- GET  /api/agent/pending    → Escalaciones pendientes (Bearer AGENT_SECRET)
- POST /api/agent/approve    → Aprobar/rechazar escalación (Bearer AGENT_SECRET)
- GET  /admin/audit          → Últimos turnos auditados (?password=ADMIN_SECRET)
- GET  /metrics              → Métricas de contención
"""

import asyncio
import logging
import secrets
import sys
import uuid
from contextlib import asynccontextmanager
from pathlib import Path
from typing import List, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

# Agregar directorio raíz al path para imports
project_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(project_root))

from api.config import Settings, get_settings
from api.models import (
    ApproveRequest,
    ApproveResponse,
    ChatRequest,
    ChatResponse,
    EscalateRequest,
    EscalateResponse,
    ErrorResponse,
    HealthResponse,
    MetricsResponse,
)
from support.context import ServiceContext, build_service_context
from support.errors import SupportError, Unauthorized
from support.escalation import ESCALATED_MESSAGE
from support.models import ConversationTurn, Escalation, Order

# Logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

API_VERSION = "1.0.0"


# Dependency Injection
# Contexto construido una vez, inyectable via Depends() para facilitar testing

_context: Optional[ServiceContext] = None


def get_context(settings: Settings = Depends(get_settings)) -> ServiceContext:
    """
    Dependency que provee el ServiceContext.

    Permite override en tests via app.dependency_overrides[get_context].
    """
    global _context
    if _context is None:
        logger.info("Inicializando ServiceContext...")
        _context = build_service_context(settings)
        logger.info("ServiceContext inicializado correctamente")
    return _context


def _check_secret(expected: Optional[str], supplied: Optional[str]) -> None:
    """Compara en tiempo constante. Un secreto sin configurar rechaza todo."""
    if not expected or not supplied:
        raise Unauthorized("Credencial faltante o no configurada")
    if not secrets.compare_digest(expected.encode(), supplied.encode()):
        raise Unauthorized("Credencial inválida")


def require_agent(request: Request, settings: Settings = Depends(get_settings)) -> None:
    """Gate de agentes: header `Authorization: Bearer <AGENT_SECRET>`."""
    scheme, _, token = request.headers.get("authorization", "").partition(" ")
    # El esquema es case-insensitive (RFC 7235)
    if scheme.lower() != "bearer":
        token = None
    _check_secret(settings.AGENT_SECRET, token)


def require_admin(
    password: Optional[str] = None, settings: Settings = Depends(get_settings)
) -> None:
    """Gate de admins: query param `?password=<ADMIN_SECRET>`."""
    _check_secret(settings.admin_secret, password)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan event handler: pre-carga el contexto al startup."""
    logger.info("Support API iniciando...")
    if get_context not in app.dependency_overrides:
        try:
            settings = get_settings()
            await asyncio.to_thread(get_context, settings)
            logger.info("ServiceContext pre-cargado")
        except Exception as e:
            logger.error(f"Error inicializando ServiceContext: {e}", exc_info=True)

    yield

    if _context is not None:
        _context.close()
    logger.info("Support API cerrando...")


# FastAPI App

app = FastAPI(
    title="Support Copilot API",
    description="API REST del asistente de soporte con RAG y aprobación humana",
    version=API_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
    responses={
        422: {"model": ErrorResponse, "description": "Error de validación"},
        500: {"model": ErrorResponse, "description": "Error interno"},
    },
)

# CORS middleware (para desarrollo)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # En producción, especificar dominios
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Global Error Handlers


def _error(status: int, type_: str, title: str, detail: str) -> JSONResponse:
    return JSONResponse(
        status_code=status,
        content=ErrorResponse(
            type=type_, title=title, status=status, detail=detail
        ).model_dump(),
    )


@app.exception_handler(SupportError)
async def support_exception_handler(request: Request, exc: SupportError):
    """
    Errores de dominio → status propio + mensaje público genérico.

    El detalle interno (SQL, ids, estados) solo va al log.
    """
    if exc.status_code >= 500:
        logger.error(
            f"{exc.error_type} en {request.url.path}: {exc.message}", exc_info=exc
        )
    else:
        logger.info(f"{exc.error_type} en {request.url.path}: {exc.message}")
    return _error(exc.status_code, exc.error_type, exc.title, exc.public_message)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Errores de validación Pydantic → 422 con formato ErrorResponse."""
    return _error(422, "validation_error", "Datos de entrada inválidos", str(exc.errors()))


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """HTTPException → ErrorResponse con el status original."""
    if exc.status_code == 404:
        return _error(
            404, "not_found", "No Encontrado", f"El endpoint '{request.url.path}' no existe."
        )
    detail = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
    return _error(exc.status_code, "http_error", detail, detail)


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    """
    Excepción no manejada → 500 genérico.

    Loguea el error real pero devuelve mensaje genérico al cliente
    para no filtrar detalles internos.
    """
    logger.error(f"Error no manejado en {request.url.path}: {exc}", exc_info=True)
    return _error(
        500,
        "internal_error",
        "Error Interno",
        "Error interno del servidor. Intenta nuevamente más tarde.",
    )


# Endpoints


@app.get("/", tags=["Root"])
async def root():
    """Endpoint raíz"""
    return {
        "message": "Support Copilot API",
        "version": API_VERSION,
        "docs": "/docs",
        "health": "/health",
    }


@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check(ctx: ServiceContext = Depends(get_context)):
    """
    Health check endpoint.

    Verifica el estado de:
    - Base de datos
    - Base de conocimiento (y si tiene embeddings)
    - Groq API (via API key)
    """
    components = {}
    overall_status = "healthy"

    if await asyncio.to_thread(ctx.db.ping):
        components["database"] = "ok"
    else:
        components["database"] = "error"
        overall_status = "unhealthy"

    entries = len(ctx.retriever.entries)
    if entries > 0:
        mode = "embeddings" if ctx.retriever.has_embeddings else "keywords"
        components["knowledge_base"] = f"ok ({entries} entries, {mode})"
    else:
        components["knowledge_base"] = "empty"
        overall_status = "degraded" if overall_status == "healthy" else overall_status

    if ctx.responder is not None:
        components["groq_api"] = "ok"
    else:
        components["groq_api"] = "no_api_key"
        overall_status = "degraded" if overall_status == "healthy" else overall_status

    return HealthResponse(status=overall_status, version=API_VERSION, components=components)


@app.post("/api/chat", response_model=ChatResponse, tags=["Chat"])
async def chat(request: ChatRequest, ctx: ServiceContext = Depends(get_context)):
    """
    Procesa un mensaje del cliente.

    **Flujo:**
    1. Búsqueda en la KB
    2. Contexto de la orden (si se indica order_id)
    3. Respuesta estructurada del LLM (o fallback determinístico)
    4. Registro en el audit log
    """
    session_id = request.session_id or str(uuid.uuid4())

    response = await asyncio.to_thread(
        ctx.orchestrator.handle,
        message=request.message,
        order_id=request.order_id,
        user_email=request.user_email,
        session_id=session_id,
    )
    return ChatResponse(**response.model_dump(), session_id=session_id)


@app.get("/api/orders/{order_id}", response_model=Order, tags=["Orders"])
async def get_order(order_id: str, ctx: ServiceContext = Depends(get_context)):
    """Detalle de una orden con sus items. 404 si no existe."""
    return await asyncio.to_thread(ctx.ledger.get, order_id)


@app.post("/api/escalate", response_model=EscalateResponse, tags=["Escalations"])
async def escalate(request: EscalateRequest, ctx: ServiceContext = Depends(get_context)):
    """Crea una escalación pendiente de aprobación humana."""
    escalation = await asyncio.to_thread(
        ctx.escalations.create,
        session_id=request.session_id,
        order_id=request.order_id,
        action=request.action,
        context=request.conversation_context,
    )
    return EscalateResponse(
        escalation_id=escalation.id, status=escalation.status, message=ESCALATED_MESSAGE
    )


@app.get(
    "/api/agent/pending",
    response_model=List[Escalation],
    tags=["Agent"],
    dependencies=[Depends(require_agent)],
)
async def pending_escalations(ctx: ServiceContext = Depends(get_context)):
    """Escalaciones pendientes, más recientes primero."""
    return await asyncio.to_thread(ctx.escalations.list_pending)


@app.post(
    "/api/agent/approve",
    response_model=ApproveResponse,
    tags=["Agent"],
    dependencies=[Depends(require_agent)],
)
async def approve_escalation(
    request: ApproveRequest, ctx: ServiceContext = Depends(get_context)
):
    """
    Aprueba o rechaza una escalación.

    **Errores posibles:**
    - 404: escalación u orden inexistente
    - 409: escalación ya resuelta o acción no aplicable al estado de la orden
    """
    outcome = await asyncio.to_thread(
        ctx.escalations.resolve,
        request.escalation_id,
        request.decision,
        request.agent_notes,
    )
    return ApproveResponse(success=outcome.success, result=outcome.result)


@app.get(
    "/admin/audit",
    response_model=List[ConversationTurn],
    tags=["Admin"],
    dependencies=[Depends(require_admin)],
)
async def audit_log(ctx: ServiceContext = Depends(get_context)):
    """Últimos turnos de conversación (PII enmascarada)."""
    return await asyncio.to_thread(ctx.audit.query, ctx.settings.AUDIT_LIMIT)


@app.get("/metrics", response_model=MetricsResponse, tags=["Stats"])
async def metrics(ctx: ServiceContext = Depends(get_context)):
    """
    Métricas básicas.

    Retorna:
    - Total de chats auditados
    - Total de escalaciones
    - Estimación de contención del bot (chats sin decisión de agente)
    """
    snapshot = await asyncio.to_thread(ctx.metrics.snapshot)
    return MetricsResponse(
        total_chats=snapshot["total_chats"],
        total_escalations=snapshot["total_escalations"],
        bot_containment_estimate=snapshot["containment_rate"],
    )


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "api.main:app",
        host=settings.API_HOST,
        port=settings.API_PORT,
        reload=True,
        log_level="info",
    )
