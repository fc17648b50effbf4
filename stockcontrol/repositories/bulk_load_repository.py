from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from stockcontrol.models import BulkLoadBatch, BulkLoadLine


def _batch_filters(
    branch_id: Optional[int] = None,
    started_from: Optional[datetime] = None,
    started_to: Optional[datetime] = None,
) -> list:
    conditions = []
    if branch_id is not None:
        conditions.append(BulkLoadBatch.branch_id == branch_id)
    if started_from is not None:
        conditions.append(BulkLoadBatch.started_at >= started_from)
    if started_to is not None:
        conditions.append(BulkLoadBatch.started_at <= started_to)
    return conditions


class BulkLoadRepository:
    def __init__(self, db: Session):
        self._db = db

    def add_batch(self, batch: BulkLoadBatch) -> None:
        self._db.add(batch)

    def add_line(self, line: BulkLoadLine) -> None:
        self._db.add(line)

    def get_batch(self, batch_id: int) -> Optional[BulkLoadBatch]:
        return self._db.get(BulkLoadBatch, batch_id)

    def lines_for(self, batch_id: int) -> list[BulkLoadLine]:
        return list(
            self._db.scalars(
                select(BulkLoadLine)
                .where(BulkLoadLine.batch_id == batch_id)
                .order_by(BulkLoadLine.line_no, BulkLoadLine.id)
            )
        )

    def list_batches(
        self,
        branch_id: Optional[int] = None,
        limit: Optional[int] = 20,
        offset: int = 0,
        started_from: Optional[datetime] = None,
        started_to: Optional[datetime] = None,
    ) -> tuple[list[BulkLoadBatch], int]:
        conditions = _batch_filters(branch_id, started_from, started_to)
        stmt = (
            select(BulkLoadBatch)
            .where(*conditions)
            .order_by(BulkLoadBatch.started_at.desc(), BulkLoadBatch.id.desc())
            .offset(offset)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        rows = list(self._db.scalars(stmt))
        total = int(self._db.scalar(select(func.count(BulkLoadBatch.id)).where(*conditions)) or 0)
        return rows, total
