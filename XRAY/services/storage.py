"""Persistence for completed analyses (SQLAlchemy).

One row per analysis, keyed by a generated id; the full canonical report is
stored as JSON next to a few queryable columns. `save` reports failure as a
`SaveOutcome` value instead of raising: a storage outage must never turn a
finished analysis into an error.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import uuid4

from sqlalchemy import JSON, Column, DateTime, Float, Integer, String, Text, create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from XRAY.shared.report_contract import Report, mime_type_for


LOGGER = logging.getLogger(__name__)

Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AnalysisRecord(Base):
    __tablename__ = "analyses"
    id = Column(String(32), primary_key=True, index=True)
    image_url = Column(String, nullable=False)
    original_filename = Column(String, nullable=False)
    file_size = Column(Integer, default=0)
    mime_type = Column(String)
    diagnosis = Column(Text)
    confidence = Column(Float)
    severity = Column(String, index=True)
    analysis_source = Column(String, index=True)
    report = Column(JSON, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


@dataclass(frozen=True)
class SaveOutcome:
    ok: bool
    record_id: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def saved(cls, record_id: str) -> "SaveOutcome":
        return cls(ok=True, record_id=record_id)

    @classmethod
    def failed(cls, error: str) -> "SaveOutcome":
        return cls(ok=False, error=error)


def build_engine(database_url: str):
    kwargs: Dict[str, Any] = {}
    if database_url.startswith("sqlite"):
        # Saves run in worker threads.
        kwargs["connect_args"] = {"check_same_thread": False}
        if database_url in {"sqlite://", "sqlite:///:memory:"}:
            kwargs["poolclass"] = StaticPool
    return create_engine(database_url, **kwargs)


class AnalysisStore:
    def __init__(self, database_url: str = "sqlite:///./dental_analysis.db", *, engine=None) -> None:
        self.engine = engine if engine is not None else build_engine(database_url)
        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)
        self._schema_ready = False
        self._schema_lock = threading.Lock()

    def init_db(self) -> None:
        Base.metadata.create_all(bind=self.engine)
        self._schema_ready = True

    def _ensure_schema(self) -> None:
        if self._schema_ready:
            return
        # One create_all per store, even under concurrent first saves.
        with self._schema_lock:
            if not self._schema_ready:
                self.init_db()

    def save(self, report: Report, *, filename: str, file_size: int) -> SaveOutcome:
        record_id = uuid4().hex
        try:
            self._ensure_schema()
            now = _utcnow()
            record = AnalysisRecord(
                id=record_id,
                image_url=f"/uploads/{filename}",
                original_filename=filename,
                file_size=int(file_size),
                mime_type=mime_type_for(filename),
                diagnosis=report["diagnosis"],
                confidence=float(report["confidence"]),
                severity=report["severity"],
                analysis_source=report["metadata"]["analysis_source"],
                report=dict(report),
                created_at=now,
                updated_at=now,
            )
            with self.SessionLocal() as db:
                db.add(record)
                db.commit()
        except SQLAlchemyError as exc:
            LOGGER.error("Failed to save analysis for %s: %s", filename, exc)
            return SaveOutcome.failed(str(exc))
        LOGGER.info("Analysis saved to database for file: %s", filename)
        return SaveOutcome.saved(record_id)

    def get(self, record_id: str) -> Optional[Dict[str, Any]]:
        self._ensure_schema()
        with self.SessionLocal() as db:
            record = db.get(AnalysisRecord, record_id)
            return _summary(record, include_report=True) if record is not None else None

    def list_recent(self, limit: int = 20) -> List[Dict[str, Any]]:
        self._ensure_schema()
        limit = max(1, min(int(limit), 100))
        with self.SessionLocal() as db:
            rows = (
                db.query(AnalysisRecord)
                .order_by(AnalysisRecord.created_at.desc())
                .limit(limit)
                .all()
            )
            return [_summary(r) for r in rows]


def _summary(record: AnalysisRecord, *, include_report: bool = False) -> Dict[str, Any]:
    out: Dict[str, Any] = {
        "id": record.id,
        "image_url": record.image_url,
        "original_filename": record.original_filename,
        "file_size": record.file_size,
        "mime_type": record.mime_type,
        "diagnosis": record.diagnosis,
        "confidence": record.confidence,
        "severity": record.severity,
        "analysis_source": record.analysis_source,
        "created_at": record.created_at.isoformat() if record.created_at else None,
    }
    if include_report:
        out["report"] = record.report
    return out
