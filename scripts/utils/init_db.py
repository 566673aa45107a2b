"""
Script para inicializar la base de datos SQLite del asistente de soporte.
Ejecuta el schema y los datos de seed (órdenes de demo).
"""

import sqlite3
import sys
from pathlib import Path

# El script está en scripts/utils/, el proyecto está 2 niveles arriba
project_root = Path(__file__).resolve().parent.parent.parent
sys.path.insert(0, str(project_root))

from api.config import get_settings
from support.db_service import DBService


def init_database():
    """Inicializa la base de datos con schema y seed data"""
    settings = get_settings()
    db_path = settings.db_full_path
    seed_path = project_root / "database" / "seeds" / "seed.sql"

    # Si la DB ya existe, preguntar antes de sobrescribir
    if db_path.exists():
        print(f"⚠️  La base de datos ya existe en {db_path}")
        response = input("¿Deseas recrearla? Esto borrará todos los datos (y/n): ")
        if response.lower() != "y":
            print("❌ Operación cancelada")
            return
        db_path.unlink()

    print(f"📦 Creando base de datos en {db_path}")

    db = DBService(db_path)
    print("📋 Ejecutando schema.sql...")
    db.init_schema(settings.schema_full_path)
    print("🌱 Insertando seed data...")
    db.load_seed(seed_path)

    # Verificar tablas creadas y conteo de registros
    conn = sqlite3.connect(db_path)
    try:
        tables = [
            row[0]
            for row in conn.execute(
                "SELECT name FROM sqlite_master WHERE type='table' AND name NOT LIKE 'sqlite_%'"
            )
        ]
        print("\n✅ Base de datos inicializada correctamente")
        print(f"📊 Tablas creadas: {', '.join(tables)}")
        for table_name in tables:
            count = conn.execute(f"SELECT COUNT(*) FROM {table_name}").fetchone()[0]
            print(f"   - {table_name}: {count} registros")
    finally:
        conn.close()

    print(f"\n🎉 Inicialización completada. DB: {db_path}")


if __name__ == "__main__":
    init_database()
