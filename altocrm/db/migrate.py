"""
Migration runner for the SQL files shipped in ``altocrm/db/migrations``.

Each ``NNN_name.sql`` file is applied once, inside its own transaction, and
recorded in ``schema_migrations`` with a SHA-256 checksum. A file edited
after it was applied shows up as ``DRIFT`` in ``status()``.

Usage:
    altocrm migrate status
    altocrm migrate apply [VERSION] [--dry-run]
"""

from __future__ import annotations

import hashlib
import logging
import re
from pathlib import Path

from psycopg2.extras import RealDictCursor

from altocrm.db.connection import get_connection

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).resolve().parent / "migrations"

# 001_name.sql, 015b_name.sql
_MIGRATION_RE = re.compile(r"^(\d+[a-z]?)_.+\.sql$")


def discover(migrations_dir: Path | None = None) -> list[tuple[str, Path]]:
    """Return sorted (version, path) pairs for every migration file."""
    d = migrations_dir or MIGRATIONS_DIR
    results: list[tuple[str, Path]] = []
    for f in sorted(d.glob("*.sql")):
        m = _MIGRATION_RE.match(f.name)
        if m:
            results.append((m.group(1), f))
    return results


def _sha256(path: Path) -> str:
    return hashlib.sha256(path.read_bytes()).hexdigest()


def _ensure_table(conn) -> None:
    cur = conn.cursor()
    cur.execute("""
        CREATE TABLE IF NOT EXISTS schema_migrations (
            version     TEXT PRIMARY KEY,
            filename    TEXT NOT NULL,
            applied_at  TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            checksum    TEXT
        )
    """)
    conn.commit()


def _applied(conn) -> dict[str, dict]:
    cur = conn.cursor(cursor_factory=RealDictCursor)
    cur.execute("SELECT version, filename, applied_at, checksum FROM schema_migrations ORDER BY version")
    return {r["version"]: dict(r) for r in cur.fetchall()}


def status(migrations_dir: Path | None = None) -> list[dict]:
    """Return one dict per migration file: version, filename, status, applied_at."""
    files = discover(migrations_dir)
    with get_connection() as conn:
        _ensure_table(conn)
        applied = _applied(conn)

    rows: list[dict] = []
    for version, path in files:
        record = applied.get(version)
        if record is None:
            state = "pending"
        elif record.get("checksum") and record["checksum"] != _sha256(path):
            state = "DRIFT"
        else:
            state = "applied"
        rows.append({
            "version": version,
            "filename": path.name,
            "status": state,
            "applied_at": record["applied_at"] if record else None,
        })
    return rows


def apply(
    version: str | None = None,
    dry_run: bool = False,
    migrations_dir: Path | None = None,
) -> list[str]:
    """Apply pending migrations in order. Returns the versions applied."""
    files = discover(migrations_dir)

    with get_connection() as conn:
        _ensure_table(conn)
        applied = _applied(conn)

        pending = [
            (v, path) for v, path in files
            if v not in applied and (version is None or v == version)
        ]
        if not pending:
            logger.info("No pending migrations")
            return []

        done: list[str] = []
        for v, path in pending:
            if dry_run:
                logger.info("[dry-run] would apply %s", path.name)
                done.append(v)
                continue

            cur = conn.cursor()
            try:
                cur.execute(path.read_text())
                cur.execute(
                    "INSERT INTO schema_migrations (version, filename, checksum) VALUES (%s, %s, %s) "
                    "ON CONFLICT (version) DO NOTHING",
                    (v, path.name, _sha256(path)),
                )
                conn.commit()
            except Exception:
                conn.rollback()
                logger.exception("Migration %s failed", path.name)
                raise
            logger.info("Applied %s", path.name)
            done.append(v)

        return done
