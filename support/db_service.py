"""
DB Service — Acceso a SQLite para el núcleo de soporte.

Encapsula conexiones y transacciones para que ledger, audit log y
escalaciones no manejen `sqlite3` directamente. Toda operación con
más de una escritura corre dentro de `transaction()`.
"""

import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, Optional

from support.errors import PersistenceError, SupportError

logger = logging.getLogger(__name__)


def utc_now() -> str:
    """Timestamp ISO-8601 en UTC."""
    return datetime.now(timezone.utc).isoformat()


class DBService:
    """Servicio de conexiones SQLite con transacciones acotadas."""

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)

    # helpers

    def _conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def read(self) -> Iterator[sqlite3.Connection]:
        """Conexión de solo lectura; se cierra al salir."""
        try:
            conn = self._conn()
        except sqlite3.Error as e:
            logger.error(f"No se pudo abrir la DB {self.db_path}: {e}", exc_info=True)
            raise PersistenceError(str(e)) from e
        try:
            yield conn
        except sqlite3.Error as e:
            logger.error(f"Error de lectura en DB: {e}", exc_info=True)
            raise PersistenceError(str(e)) from e
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """
        Transacción `BEGIN IMMEDIATE` con commit al salir.

        Cualquier excepción hace rollback completo. Los errores de
        `sqlite3` se traducen a PersistenceError; los errores de dominio
        se propagan tal cual.
        """
        try:
            conn = self._conn()
            conn.execute("BEGIN IMMEDIATE")
        except sqlite3.Error as e:
            logger.error(f"No se pudo iniciar transacción: {e}", exc_info=True)
            raise PersistenceError(str(e)) from e

        try:
            yield conn
            conn.commit()
        except SupportError:
            conn.rollback()
            raise
        except sqlite3.Error as e:
            conn.rollback()
            logger.error(f"Transacción revertida por error de DB: {e}", exc_info=True)
            raise PersistenceError(str(e)) from e
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    @contextmanager
    def use(self, conn: Optional[sqlite3.Connection] = None) -> Iterator[sqlite3.Connection]:
        """Reutiliza la conexión del llamador o abre una transacción propia."""
        if conn is not None:
            yield conn
            return
        with self.transaction() as own:
            yield own

    # bootstrap

    def init_schema(self, schema_path: Path) -> None:
        """Ejecuta el schema SQL (idempotente: CREATE ... IF NOT EXISTS)."""
        self._executescript(schema_path)
        logger.info(f"Schema aplicado en {self.db_path}")

    def load_seed(self, seed_path: Path) -> None:
        """Carga datos de demo (INSERT OR IGNORE)."""
        self._executescript(seed_path)
        logger.info(f"Seed cargado desde {seed_path}")

    def _executescript(self, path: Path) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "r", encoding="utf-8") as f:
            script = f.read()
        conn = sqlite3.connect(self.db_path)
        try:
            conn.executescript(script)
            conn.commit()
        except sqlite3.Error as e:
            logger.error(f"Error ejecutando {path}: {e}", exc_info=True)
            raise PersistenceError(str(e)) from e
        finally:
            conn.close()

    def ping(self) -> bool:
        """True si la DB responde."""
        try:
            with self.read() as conn:
                conn.execute("SELECT 1").fetchone()
            return True
        except PersistenceError:
            return False
