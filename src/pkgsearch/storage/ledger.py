"""Persistent history of index generations.

The engine's aliases are the source of truth for what serves traffic; the
ledger records how each generation got there (document counts, promotion
and deletion times, load failures) for operators.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from pkgsearch.exceptions import StorageError

from .database import open_ledger_database
from .models import GenerationRecord


def _now() -> datetime:
    return datetime.now(timezone.utc)


class GenerationLedger:
    def __init__(self, factory: sessionmaker[Session]) -> None:
        self._factory = factory

    @classmethod
    def from_url(cls, url: str, *, echo: bool = False) -> GenerationLedger:
        return cls(open_ledger_database(url, echo=echo))

    def _update(self, name: str, **values: object) -> None:
        try:
            with self._factory.begin() as session:
                record = session.get(GenerationRecord, name)
                if record is None:
                    record = GenerationRecord(name=name)
                    session.add(record)
                for key, value in values.items():
                    setattr(record, key, value)
        except SQLAlchemyError as exc:
            raise StorageError(f"Could not update ledger entry {name}: {exc}") from exc

    def record_created(self, name: str, created_at: Optional[datetime] = None) -> None:
        self._update(name, status="created", created_at=created_at or _now())

    def record_loaded(self, name: str, document_count: int) -> None:
        self._update(name, status="loaded", document_count=document_count)

    def record_failed(self, name: str, error: str) -> None:
        self._update(name, status="failed", error=error[:4000])

    def record_promoted(
        self,
        name: str,
        *,
        demoted: Iterable[str] = (),
        deleted: Iterable[str] = (),
    ) -> None:
        now = _now()
        self._update(name, status="live", promoted_at=now)
        for old in demoted:
            self._update(old, status="previous")
        for old in deleted:
            self._update(old, status="deleted", deleted_at=now)

    def get(self, name: str) -> Optional[GenerationRecord]:
        try:
            with self._factory.begin() as session:
                return session.get(GenerationRecord, name)
        except SQLAlchemyError as exc:
            raise StorageError(f"Could not read ledger entry {name}: {exc}") from exc

    def list_generations(self, limit: int = 50) -> List[GenerationRecord]:
        """Most recent generations first."""
        try:
            with self._factory.begin() as session:
                stmt = select(GenerationRecord).order_by(GenerationRecord.name.desc()).limit(limit)
                return list(session.scalars(stmt))
        except SQLAlchemyError as exc:
            raise StorageError(f"Could not list generations: {exc}") from exc
