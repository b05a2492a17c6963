#!/usr/bin/env python3
"""Check the FlexHunt schema against a Supabase project.

The Supabase Python client can't execute raw SQL, so the migrations in
``migrations/`` are pasted into the dashboard SQL editor. This script
lists what each file contains and reports which tables already exist.

Credentials come from the same environment / .env file as the API
(SUPABASE_URL plus SUPABASE_SECRET_KEY or SUPABASE_SERVICE_ROLE_KEY).
"""

import sys
from pathlib import Path

from flexhunt.config import get_settings
from flexhunt.database import (
    ASSESSMENTS_TABLE,
    DISPUTES_TABLE,
    GIGS_TABLE,
    ORDERS_TABLE,
    PAYMENTS_TABLE,
    QUESTIONS_TABLE,
    get_supabase_client,
)

MIGRATIONS_DIR = Path(__file__).parent / "migrations"
TABLES = [GIGS_TABLE, PAYMENTS_TABLE, ORDERS_TABLE, DISPUTES_TABLE, QUESTIONS_TABLE, ASSESSMENTS_TABLE]


def split_statements(sql: str) -> list[str]:
    """Split a migration into statements, keeping $$-quoted function bodies whole."""
    statements = []
    current = []
    in_body = False
    for line in sql.split("\n"):
        stripped = line.strip()
        if not in_body and (stripped.startswith("--") or not stripped):
            continue
        current.append(line)
        if stripped.count("$$") % 2 == 1:
            in_body = not in_body
        if not in_body and stripped.endswith(";"):
            statements.append("\n".join(current).strip())
            current = []
    return statements


def main() -> int:
    settings = get_settings()
    print("Connecting to Supabase...")
    client = get_supabase_client(settings)

    for path in sorted(MIGRATIONS_DIR.glob("*.sql")):
        statements = split_statements(path.read_text())
        print(f"{path.name}: {len(statements)} statements")

    print("\nSupabase Python client doesn't support raw SQL execution.")
    print("Paste each file from migrations/ into the dashboard SQL editor, in order.\n")

    missing = []
    for table in TABLES:
        try:
            client.table(table).select("*").limit(1).execute()
            print(f"  ✓ {table}")
        except Exception as e:
            print(f"  ✗ {table}: {str(e)[:80]}")
            missing.append(table)

    if missing:
        print(f"\n{len(missing)} table(s) missing; run the migrations.")
        return 1
    print("\nSchema is in place.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
