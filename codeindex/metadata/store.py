from __future__ import annotations

"""Persistence of indexing runs and per-file outcomes."""

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any
from urllib.parse import urlparse, urlunparse


class IndexRunStoreError(RuntimeError):
    """Raised when index run persistence fails."""
    pass


@dataclass(frozen=True)
class IndexRun:
    """Stored summary of a single indexing run."""
    id: str
    codebase_id: str
    status: str
    total_files: int
    indexed_files: int | None = None
    failed_files: int | None = None
    chunk_count: int | None = None
    root_hash: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class IndexFileResult:
    run_id: str
    file_path: str
    status: str
    chunk_count: int
    error: str | None = None


class IndexRunStore:
    """Store index runs in a SQL database."""
    def __init__(self, connection_uri: str) -> None:
        """Initialize the run store and ensure tables exist."""
        try:
            from sqlalchemy import (
                Column,
                DateTime,
                ForeignKey,
                Integer,
                MetaData,
                String,
                Table,
                Text,
                create_engine,
            )
        except ImportError as exc:  # pragma: no cover - optional dependency
            raise IndexRunStoreError(
                "sqlalchemy is required to use the index run store"
            ) from exc

        self._engine = create_engine(connection_uri)
        self._metadata = MetaData()
        self._runs = Table(
            "index_runs",
            self._metadata,
            Column("id", String(36), primary_key=True),
            Column("codebase_id", String(128), nullable=False),
            Column("status", String(32), nullable=False),
            Column("total_files", Integer, nullable=False),
            Column("indexed_files", Integer, nullable=True),
            Column("failed_files", Integer, nullable=True),
            Column("chunk_count", Integer, nullable=True),
            Column("root_hash", String(64), nullable=True),
            Column("error", Text, nullable=True),
            Column("created_at", DateTime(timezone=True), nullable=False),
            Column("completed_at", DateTime(timezone=True), nullable=True),
        )
        self._files = Table(
            "index_file_results",
            self._metadata,
            Column("id", String(36), primary_key=True),
            Column("run_id", String(36), ForeignKey("index_runs.id"), nullable=False),
            Column("file_path", Text, nullable=False),
            Column("status", String(32), nullable=False),
            Column("chunk_count", Integer, nullable=False),
            Column("error", Text, nullable=True),
            Column("created_at", DateTime(timezone=True), nullable=False),
        )
        self._metadata.create_all(self._engine)

    def record_start(self, codebase_id: str, total_files: int) -> str:
        """Create a new run record and return its ID."""
        run_id = str(uuid.uuid4())
        with self._engine.begin() as conn:
            conn.execute(
                self._runs.insert().values(
                    id=run_id,
                    codebase_id=codebase_id,
                    status="started",
                    total_files=total_files,
                    created_at=datetime.now(timezone.utc),
                )
            )
        return run_id

    def record_file(
        self,
        run_id: str,
        file_path: str,
        status: str,
        chunk_count: int = 0,
        error: str | None = None,
    ) -> None:
        with self._engine.begin() as conn:
            conn.execute(
                self._files.insert().values(
                    id=str(uuid.uuid4()),
                    run_id=run_id,
                    file_path=file_path,
                    status=status,
                    chunk_count=chunk_count,
                    error=error,
                    created_at=datetime.now(timezone.utc),
                )
            )

    def record_complete(
        self,
        run_id: str,
        indexed_files: int,
        failed_files: int,
        chunk_count: int,
        root_hash: str,
    ) -> None:
        """Mark a run as completed with counts and the integrity root."""
        with self._engine.begin() as conn:
            conn.execute(
                self._runs.update()
                .where(self._runs.c.id == run_id)
                .values(
                    status="completed",
                    indexed_files=indexed_files,
                    failed_files=failed_files,
                    chunk_count=chunk_count,
                    root_hash=root_hash,
                    completed_at=datetime.now(timezone.utc),
                )
            )

    def record_failure(self, run_id: str, error: str) -> None:
        """Mark a run as failed with an error message."""
        with self._engine.begin() as conn:
            conn.execute(
                self._runs.update()
                .where(self._runs.c.id == run_id)
                .values(status="failed", error=error, completed_at=datetime.now(timezone.utc))
            )

    def get_run(self, run_id: str) -> IndexRun | None:
        with self._engine.connect() as conn:
            row = conn.execute(self._runs.select().where(self._runs.c.id == run_id)).mappings().first()
        if row is None:
            return None
        return self._to_run(row)

    def latest_run(self, codebase_id: str) -> IndexRun | None:
        """Return the most recently started run for a codebase."""
        query = (
            self._runs.select()
            .where(self._runs.c.codebase_id == codebase_id)
            .order_by(self._runs.c.created_at.desc())
            .limit(1)
        )
        with self._engine.connect() as conn:
            row = conn.execute(query).mappings().first()
        if row is None:
            return None
        return self._to_run(row)

    def file_results(self, run_id: str) -> list[IndexFileResult]:
        query = (
            self._files.select()
            .where(self._files.c.run_id == run_id)
            .order_by(self._files.c.file_path)
        )
        with self._engine.connect() as conn:
            rows = conn.execute(query).mappings().all()
        return [
            IndexFileResult(
                run_id=row["run_id"],
                file_path=row["file_path"],
                status=row["status"],
                chunk_count=row["chunk_count"],
                error=row["error"],
            )
            for row in rows
        ]

    @staticmethod
    def redact_uri(uri: str) -> str:
        """Redact credentials from connection URIs before logging."""
        if "://" not in uri:
            return uri
        parsed = urlparse(uri)
        if parsed.password is None:
            return uri
        netloc = parsed.hostname or ""
        if parsed.username:
            netloc = f"{parsed.username}:***@{netloc}"
        if parsed.port:
            netloc = f"{netloc}:{parsed.port}"
        return urlunparse(
            (parsed.scheme, netloc, parsed.path, parsed.params, parsed.query, parsed.fragment)
        )

    @staticmethod
    def _to_run(row: Any) -> IndexRun:
        return IndexRun(
            id=row["id"],
            codebase_id=row["codebase_id"],
            status=row["status"],
            total_files=row["total_files"],
            indexed_files=row["indexed_files"],
            failed_files=row["failed_files"],
            chunk_count=row["chunk_count"],
            root_hash=row["root_hash"],
            error=row["error"],
        )
