"""
Script para aplicar as migrations do marketing core.

Uso:
    python migrations/apply.py

Requer: SUPABASE_URL e SUPABASE_SERVICE_KEY no .env e a funcao
`exec_sql` instalada no banco.
"""
import os
import sys
from pathlib import Path

from dotenv import load_dotenv
from supabase import create_client

load_dotenv()

MIGRATIONS_DIR = Path(__file__).parent

# Ordem das migrations
MIGRATIONS = [
    "001_marketing_core.sql",
]


def apply_migrations(client) -> bool:
    """Aplica todas as migrations em ordem. Para na primeira falha."""
    for migration_file in MIGRATIONS:
        path = MIGRATIONS_DIR / migration_file
        if not path.exists():
            print(f"[SKIP] {migration_file} nao encontrado")
            continue

        print(f"[APPLY] {migration_file}...")
        try:
            client.rpc("exec_sql", {"sql": path.read_text()}).execute()
        except Exception as e:
            print(f"[ERROR] {migration_file}: {e}")
            print(f"Aplique manualmente: {path}")
            return False
        print(f"[OK] {migration_file}")

    return True


def main() -> int:
    url = os.getenv("SUPABASE_URL")
    key = os.getenv("SUPABASE_SERVICE_KEY")
    if not url or not key:
        print("Erro: SUPABASE_URL e SUPABASE_SERVICE_KEY necessarios no .env")
        return 1

    return 0 if apply_migrations(create_client(url, key)) else 1


if __name__ == "__main__":
    sys.exit(main())
