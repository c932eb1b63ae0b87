"""SQLAlchemy powered document store shared by SQLite, MySQL and Postgres."""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any, cast

from sqlalchemy import Column, DateTime, String, Text, create_engine, delete, select, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from comp_planner.db.base_backend import BackendStrategy, PersistenceResult
from comp_planner.exceptions import StorageFailure
from comp_planner.utils.clock import ensure_utc, utc_now
from comp_planner.utils.logger import get_logger

LOGGER = get_logger(__name__)


class Base(DeclarativeBase):
    pass


class _Document(Base):
    __tablename__ = "planner_documents"

    key = Column(String(255), primary_key=True)
    value = Column(Text, nullable=False)
    expires_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, nullable=False)


def _naive_utc(value: datetime) -> datetime:
    # DateTime columns are timezone-naive on SQLite/MySQL; store UTC wall time.
    return ensure_utc(value).replace(tzinfo=None)


class RelationalBackend(BackendStrategy):
    """Base class that encapsulates SQLAlchemy powered interactions."""

    def __init__(self, url: str, *, engine_options: dict[str, Any] | None = None) -> None:
        self.url = url
        self._engine_options = engine_options or {}
        self._engine_instance: Engine | None = None
        self._session_factory: sessionmaker[Session] | None = None

    def _get_engine(self) -> Engine:
        if self._engine_instance is None:
            self._engine_instance = create_engine(
                self.url, echo=False, future=True, **self._engine_options
            )
        return self._engine_instance

    def _sessions(self) -> sessionmaker[Session]:
        if self._session_factory is None:
            self._session_factory = sessionmaker(
                bind=self._get_engine(), expire_on_commit=False, future=True
            )
        return self._session_factory

    def ensure_schema(self) -> None:
        try:
            engine = self._get_engine()
            with engine.begin() as connection:
                LOGGER.info("Ensuring planner_documents schema exists")
                connection.execute(text("SELECT 1"))
            Base.metadata.create_all(engine)
        except SQLAlchemyError as exc:
            raise StorageFailure(f"Failed to ensure document schema: {exc}") from exc

    def put(self, key: str, value: Any, *, expires_at: datetime | None = None) -> PersistenceResult:
        result = PersistenceResult()
        try:
            payload = json.dumps(value, sort_keys=True)
        except (TypeError, ValueError) as exc:
            raise StorageFailure(f"Document {key!r} is not JSON serialisable: {exc}") from exc
        try:
            with self._sessions()() as session:
                existing = session.get(_Document, key)
                stored_expiry = _naive_utc(expires_at) if expires_at is not None else None
                if existing is None:
                    session.add(
                        _Document(
                            key=key,
                            value=payload,
                            expires_at=stored_expiry,
                            updated_at=_naive_utc(utc_now()),
                        )
                    )
                    result.inserted += 1
                else:
                    setattr(existing, "value", payload)
                    setattr(existing, "expires_at", stored_expiry)
                    setattr(existing, "updated_at", _naive_utc(utc_now()))
                    result.updated += 1
                session.commit()
        except SQLAlchemyError as exc:
            raise StorageFailure(f"Failed to write document {key!r}: {exc}") from exc
        return result

    def _load(self, key: str) -> _Document | None:
        try:
            with self._sessions()() as session:
                return session.get(_Document, key)
        except SQLAlchemyError as exc:
            raise StorageFailure(f"Failed to read document {key!r}: {exc}") from exc

    def get(self, key: str) -> Any | None:
        document = self._load(key)
        if document is None:
            return None
        return json.loads(cast(str, document.value))

    def get_unexpired(self, key: str, now: datetime) -> Any | None:
        document = self._load(key)
        if document is None:
            return None
        expires_at = cast("datetime | None", document.expires_at)
        if expires_at is not None and ensure_utc(expires_at) <= ensure_utc(now):
            return None
        return json.loads(cast(str, document.value))

    def scan_prefix(self, prefix: str) -> list[tuple[str, Any]]:
        stmt = (
            select(_Document)
            .where(_Document.key.startswith(prefix, autoescape=True))
            .order_by(_Document.key)
        )
        try:
            with self._sessions()() as session:
                documents = list(session.execute(stmt).scalars())
        except SQLAlchemyError as exc:
            raise StorageFailure(f"Failed to scan documents with prefix {prefix!r}: {exc}") from exc
        return [
            (cast(str, document.key), json.loads(cast(str, document.value)))
            for document in documents
        ]

    def delete(self, key: str) -> bool:
        try:
            with self._sessions()() as session:
                outcome = session.execute(delete(_Document).where(_Document.key == key))
                session.commit()
        except SQLAlchemyError as exc:
            raise StorageFailure(f"Failed to delete document {key!r}: {exc}") from exc
        return bool(outcome.rowcount)

    def close(self) -> None:  # pragma: no cover - trivial resource cleanup
        if self._engine_instance is not None:
            self._engine_instance.dispose()

    def __enter__(self) -> "RelationalBackend":  # pragma: no cover - trivial
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # pragma: no cover - trivial
        self.close()


__all__ = ["RelationalBackend"]
