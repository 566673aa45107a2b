"""
Configuración centralizada del servicio de soporte.

Usa Pydantic BaseSettings para:
- Validar TODAS las variables de entorno al startup
- Proveer tipos seguros y defaults documentados
- Permitir modo degradado explícito (sin GROQ_API_KEY → respuesta fallback)
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


# Raíz del proyecto (donde vive .env)
PROJECT_ROOT = Path(__file__).resolve().parent.parent


def _resolve(path: str) -> Path:
    p = Path(path)
    if p.is_absolute():
        return p
    return PROJECT_ROOT / p


class Settings(BaseSettings):
    """Configuración tipada y validada del servicio."""

    model_config = SettingsConfigDict(
        env_file=str(PROJECT_ROOT / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",  # Ignorar env vars no declaradas
    )

    # LLM / Groq: sin API key el chat responde en modo degradado
    GROQ_API_KEY: Optional[str] = None
    LLM_MODEL: str = "llama-3.3-70b-versatile"
    LLM_TEMPERATURE: float = 0.3

    # Embeddings
    EMBEDDINGS_ENABLED: bool = True
    EMBEDDING_MODEL: str = "all-MiniLM-L6-v2"

    # Knowledge base
    KB_PATH: str = "knowledge/kb.json"
    KB_INDEX_PATH: str = "knowledge/kb-index.json"
    KB_TOP_K: int = 3

    # Presupuesto por request para retrieval + LLM
    PROVIDER_TIMEOUT_SECONDS: float = 15.0

    # Audit
    AUDIT_LIMIT: int = 50

    # Credenciales de agentes / admins (sin configurar = acceso denegado)
    AGENT_SECRET: Optional[str] = None
    ADMIN_SECRET: Optional[str] = None

    # Database
    DATABASE_PATH: str = "database/sqlite/support.db"
    SCHEMA_PATH: str = "database/schema/schema.sql"

    # API
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8000

    @property
    def db_full_path(self) -> Path:
        """Ruta absoluta a la base de datos."""
        return _resolve(self.DATABASE_PATH)

    @property
    def schema_full_path(self) -> Path:
        return _resolve(self.SCHEMA_PATH)

    @property
    def kb_full_path(self) -> Path:
        return _resolve(self.KB_PATH)

    @property
    def kb_index_full_path(self) -> Path:
        return _resolve(self.KB_INDEX_PATH)

    @property
    def admin_secret(self) -> Optional[str]:
        """ADMIN_SECRET, o AGENT_SECRET si no se configuró uno propio."""
        return self.ADMIN_SECRET or self.AGENT_SECRET


@lru_cache
def get_settings() -> Settings:
    """Singleton de configuración (cacheado)."""
    return Settings()
