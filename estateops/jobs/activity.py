from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from estateops.db.models import ActivityLog
from estateops.jobs.types import ActivityPage, ActivitySnapshot

logger = logging.getLogger(__name__)


class ActivityLogService:
    """Append-only audit trail of job submissions, cancellations, outcomes and sweeps."""

    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory

    def record(
        self,
        action: str,
        *,
        actor: str,
        details: str,
        job_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        # Audit writes never fail the operation being audited.
        try:
            with self._session_factory() as session:
                session.add(
                    ActivityLog(
                        action=action,
                        actor=actor,
                        job_id=job_id,
                        details=details,
                        metadata_json=metadata or {},
                        created_at=datetime.now(tz=timezone.utc),
                    )
                )
                session.commit()
        except SQLAlchemyError:
            logger.exception("Failed to record activity %s for job %s", action, job_id)

    def list_page(self, *, page: int = 1, page_size: int = 20, job_id: str | None = None) -> ActivityPage:
        if page < 1:
            raise ValueError("page must be >= 1")
        if page_size < 1:
            raise ValueError("page_size must be >= 1")
        with self._session_factory() as session:
            stmt = select(ActivityLog).order_by(ActivityLog.created_at.desc(), ActivityLog.id.desc())
            count_stmt = select(func.count()).select_from(ActivityLog)
            if job_id is not None:
                stmt = stmt.where(ActivityLog.job_id == job_id)
                count_stmt = count_stmt.where(ActivityLog.job_id == job_id)
            total = int(session.scalar(count_stmt) or 0)
            rows = session.scalars(stmt.offset((page - 1) * page_size).limit(page_size)).all()
            items = [
                ActivitySnapshot(
                    id=row.id,
                    action=row.action,
                    actor=row.actor,
                    job_id=row.job_id,
                    details=row.details,
                    metadata=dict(row.metadata_json or {}),
                    created_at=row.created_at if row.created_at.tzinfo else row.created_at.replace(tzinfo=timezone.utc),
                )
                for row in rows
            ]
        return ActivityPage(items=items, total=total, page=page, page_size=page_size)


def activity_to_dict(snapshot: ActivitySnapshot) -> dict[str, Any]:
    return {
        "id": snapshot.id,
        "action": snapshot.action,
        "actor": snapshot.actor,
        "job_id": snapshot.job_id,
        "details": snapshot.details,
        "metadata": snapshot.metadata,
        "created_at": snapshot.created_at,
    }
