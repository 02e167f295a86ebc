from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional, Sequence

from sqlalchemy.orm import Session

from audit.db import (
    DATABASE_URL,
    AuditEntryModel,
    create_audit_engine,
    create_session_factory,
    init_db,
)
from audit.schemas import AuditEntry, RunOutcome

logger = logging.getLogger(__name__)


class AuditLog:
    """
    Append-only record of every run.

    append() is the only mutation. recent() feeds the next plan request,
    giving the generator session-like continuity without the pipeline holding
    conversational state.
    """

    def __init__(self, database_url: str = DATABASE_URL, db: Optional[Session] = None):
        """
        Args:
            database_url: SQLAlchemy URL of the audit store
            db: Externally managed session (caller commits). If None, a
                session is opened per operation
        """
        self._db = db
        self._use_external_db = db is not None
        self._session_factory = None

        if not self._use_external_db:
            engine = create_audit_engine(database_url)
            init_db(engine)
            self._session_factory = create_session_factory(engine)

    def _get_db(self) -> Session:
        if self._use_external_db:
            return self._db
        return self._session_factory()

    def _close_db(self, db: Session) -> None:
        if not self._use_external_db:
            db.close()

    def append(
        self,
        outcome: RunOutcome,
        summary: str,
        files_written: Sequence[str] = (),
        error_detail: Optional[str] = None,
        run_id: Optional[str] = None,
        snapshot_id: Optional[str] = None,
        requires_intervention: bool = False,
        timestamp: Optional[datetime] = None,
    ) -> AuditEntry:
        """
        Append one run outcome.

        Returns:
            The stored entry (with its sequence id)
        """
        db = self._get_db()
        try:
            model = AuditEntryModel(
                timestamp=timestamp or datetime.utcnow(),
                outcome=outcome,
                summary=summary,
                files_written=list(files_written),
                error_detail=error_detail,
                run_id=run_id,
                snapshot_id=snapshot_id,
                requires_intervention=requires_intervention,
            )
            db.add(model)
            if self._use_external_db:
                db.flush()
            else:
                db.commit()

            entry = self._to_entry(model)
            logger.info(f"Audit entry {entry.id}: {outcome.value} ({len(entry.files_written)} files)")
            return entry
        finally:
            self._close_db(db)

    def recent(self, limit: int = 5) -> List[AuditEntry]:
        """Most recent `limit` entries, oldest first."""
        if limit <= 0:
            return []

        db = self._get_db()
        try:
            rows = (
                db.query(AuditEntryModel)
                .order_by(AuditEntryModel.id.desc())
                .limit(limit)
                .all()
            )
            return [self._to_entry(row) for row in reversed(rows)]
        finally:
            self._close_db(db)

    def all(self, outcome: Optional[RunOutcome] = None) -> List[AuditEntry]:
        """Every entry in append order, optionally filtered by outcome."""
        db = self._get_db()
        try:
            query = db.query(AuditEntryModel)
            if outcome is not None:
                query = query.filter(AuditEntryModel.outcome == outcome)
            return [self._to_entry(row) for row in query.order_by(AuditEntryModel.id.asc()).all()]
        finally:
            self._close_db(db)

    def count(self) -> int:
        db = self._get_db()
        try:
            return db.query(AuditEntryModel).count()
        finally:
            self._close_db(db)

    @staticmethod
    def _to_entry(model: AuditEntryModel) -> AuditEntry:
        return AuditEntry(
            id=model.id,
            timestamp=model.timestamp,
            outcome=model.outcome,
            summary=model.summary,
            files_written=list(model.files_written or []),
            error_detail=model.error_detail,
            run_id=model.run_id,
            snapshot_id=model.snapshot_id,
            requires_intervention=bool(model.requires_intervention),
        )
