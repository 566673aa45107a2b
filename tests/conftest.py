"""
Configuración compartida de fixtures para los tests del asistente de soporte.

Provee:
- Settings de prueba (sin necesidad de .env real)
- DB SQLite temporal con schema + seed
- Retriever solo-keywords y responder falso (sin modelos ni red)
- TestClient de FastAPI con dependency overrides
"""

import json
import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

# Agregar raíz del proyecto al path
project_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(project_root))

from api.config import Settings, get_settings
from api.main import app, get_context
from rag.ingest.build_index import load_knowledge_base
from rag.query.retriever import KnowledgeRetriever
from support.context import assemble_context
from support.db_service import DBService

SCHEMA_PATH = project_root / "database" / "schema" / "schema.sql"
SEED_PATH = project_root / "database" / "seeds" / "seed.sql"
KB_PATH = project_root / "knowledge" / "kb.json"

AGENT_SECRET = "agent-secret-test"
ADMIN_SECRET = "admin-secret-test"


# Fakes


class FakeResponder:
    """Responder que devuelve un string fijo o lanza la excepción configurada."""

    def __init__(self, raw=None, error=None):
        self.raw = raw
        self.error = error
        self.calls = []

    def complete_json(self, system_prompt, user_message, timeout=None):
        self.calls.append(
            {"system_prompt": system_prompt, "user_message": user_message, "timeout": timeout}
        )
        if self.error is not None:
            raise self.error
        return self.raw


def llm_json(**overrides) -> str:
    payload = {
        "intent": "order_status",
        "confidence": 0.9,
        "response_text": "Your order ORD-1001 is placed and will ship soon.",
        "actions": [{"type": "none"}],
    }
    payload.update(overrides)
    return json.dumps(payload)


# Settings de prueba


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    """Settings con valores seguros para testing (no necesita .env)."""
    return Settings(
        GROQ_API_KEY=None,
        EMBEDDINGS_ENABLED=False,
        DATABASE_PATH=str(tmp_path / "support.db"),
        SCHEMA_PATH=str(SCHEMA_PATH),
        KB_PATH=str(KB_PATH),
        KB_INDEX_PATH=str(tmp_path / "kb-index.json"),
        PROVIDER_TIMEOUT_SECONDS=5.0,
        AUDIT_LIMIT=50,
        AGENT_SECRET=AGENT_SECRET,
        ADMIN_SECRET=ADMIN_SECRET,
    )


# DB + servicios


@pytest.fixture
def db(test_settings) -> DBService:
    """DB temporal con schema y órdenes de demo."""
    service = DBService(test_settings.db_full_path)
    service.init_schema(SCHEMA_PATH)
    service.load_seed(SEED_PATH)
    return service


@pytest.fixture
def kb_entries():
    return load_knowledge_base(KB_PATH)


@pytest.fixture
def retriever(kb_entries):
    r = KnowledgeRetriever(kb_entries, embedder=None, top_k=3)
    yield r
    r.close()


@pytest.fixture
def responder():
    return FakeResponder(raw=llm_json())


@pytest.fixture
def context(test_settings, db, retriever, responder):
    return assemble_context(test_settings, db, retriever, responder)


@pytest.fixture
def ledger(context):
    return context.ledger


@pytest.fixture
def audit(context):
    return context.audit


@pytest.fixture
def escalations(context):
    return context.escalations


# TestClient con DI overrides


@pytest.fixture
def client(test_settings, context) -> TestClient:
    """
    TestClient de FastAPI con dependency overrides.

    - get_settings → test_settings (sin .env)
    - get_context  → context sobre DB temporal (sin cargar modelos)
    """
    app.dependency_overrides[get_settings] = lambda: test_settings
    app.dependency_overrides[get_context] = lambda: context

    with TestClient(app, raise_server_exceptions=False) as c:
        yield c

    # Limpiar overrides después del test
    app.dependency_overrides.clear()


@pytest.fixture
def agent_headers():
    return {"Authorization": f"Bearer {AGENT_SECRET}"}


