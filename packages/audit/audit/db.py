from __future__ import annotations

import os
from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum as SQLEnum,
    Integer,
    String,
    Text,
    create_engine,
)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

from audit.schemas import RunOutcome

# Default audit store
DATABASE_URL = os.getenv(
    "SITEKEEPER_AUDIT_DB_URL",
    "sqlite:///./sitekeeper_audit.db"
)

Base = declarative_base()


class AuditEntryModel(Base):
    """Audit entry table. Rows are inserted, never updated or deleted."""
    __tablename__ = "audit_entries"

    # Autoincrement id gives the append order
    id = Column(Integer, primary_key=True, autoincrement=True)
    timestamp = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    outcome = Column(SQLEnum(RunOutcome), nullable=False, index=True)
    summary = Column(Text, nullable=False)
    files_written = Column(JSON, nullable=False, default=list)
    error_detail = Column(Text, nullable=True)
    run_id = Column(String, nullable=True, index=True)
    snapshot_id = Column(String, nullable=True)
    requires_intervention = Column(Boolean, nullable=False, default=False)


def create_audit_engine(database_url: str = DATABASE_URL, echo: bool = False) -> Engine:
    return create_engine(
        database_url,
        connect_args={"check_same_thread": False} if "sqlite" in database_url else {},
        echo=echo or os.getenv("SITEKEEPER_AUDIT_DB_ECHO", "").lower() == "true",
    )


def create_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autoflush=False, bind=engine)


def init_db(engine: Engine) -> None:
    """Create audit tables if missing"""
    Base.metadata.create_all(bind=engine)
