"""Checksum-tracked SQL migrations applied on startup."""
from __future__ import annotations

import asyncio
import hashlib
from pathlib import Path
from typing import Iterable

import asyncpg  # type: ignore[import-untyped]
import structlog

logger = structlog.get_logger(__name__)

DEFAULT_MIGRATION_PATHS = (
    Path(__file__).resolve().parents[3] / "migrations",  # source checkout
    Path("/app/migrations"),  # container image
)


def find_migrations_dir(possible_paths: Iterable[Path]) -> Path | None:
    for path in possible_paths:
        if path.exists():
            return path
    return None


def load_migrations(migrations_dir: Path) -> dict[str, Path]:
    migrations: dict[str, Path] = {}
    for path in sorted(migrations_dir.glob("*.sql")):
        version = path.stem
        if version in migrations:
            raise ValueError(f"Duplicate migration version detected: {version}")
        migrations[version] = path
    return migrations


async def _connect(database_url: str, *, max_retries: int = 5, retry_delay: float = 2.0) -> asyncpg.Connection:
    for attempt in range(1, max_retries + 1):
        try:
            return await asyncpg.connect(database_url)
        except (OSError, asyncpg.exceptions.InvalidCatalogNameError) as exc:
            if attempt == max_retries:
                raise
            logger.warning(
                "database not reachable yet",
                attempt=attempt,
                max_retries=max_retries,
                error=str(exc),
            )
            await asyncio.sleep(retry_delay)
    raise RuntimeError("unreachable")


async def apply_migrations(database_url: str, possible_paths: Iterable[Path] = DEFAULT_MIGRATION_PATHS) -> int:
    """Apply pending migrations and return how many were applied."""
    possible_paths = list(possible_paths)
    migrations_dir = find_migrations_dir(possible_paths)
    if migrations_dir is None:
        logger.warning("migrations directory not found, skipping", tried=[str(p) for p in possible_paths])
        return 0
    migrations = load_migrations(migrations_dir)
    if not migrations:
        logger.warning("no migrations found, skipping", path=str(migrations_dir))
        return 0

    conn = await _connect(database_url)
    try:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS schema_migrations (
                version text PRIMARY KEY,
                checksum text NOT NULL,
                applied_at timestamptz NOT NULL DEFAULT now()
            );
            """
        )
        rows = await conn.fetch("SELECT version, checksum FROM schema_migrations")
        applied = {row["version"]: row["checksum"] for row in rows}

        pending = []
        for version, path in migrations.items():
            sql = path.read_text(encoding="utf-8")
            checksum = hashlib.sha256(sql.encode("utf-8")).hexdigest()
            if version in applied:
                if applied[version] != checksum:
                    raise RuntimeError(
                        f"Checksum mismatch for {version}: "
                        f"{applied[version]} (db) != {checksum} (file)"
                    )
                continue
            pending.append((version, sql, checksum))

        for version, sql, checksum in pending:
            async with conn.transaction():
                await conn.execute(sql)
                await conn.execute(
                    "INSERT INTO schema_migrations (version, checksum) VALUES ($1, $2)",
                    version,
                    checksum,
                )
            logger.info("migration applied", version=version)
        return len(pending)
    finally:
        await conn.close()
