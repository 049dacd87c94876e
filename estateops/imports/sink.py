from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Sequence

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from estateops.db.models import PropertySale
from estateops.imports.records import PropertySaleRecord
from estateops.imports.types import BatchResult, ImportOptions

logger = logging.getLogger(__name__)

_UPDATABLE_FIELDS = (
    "price",
    "date_of_transfer",
    "postcode",
    "property_type",
    "old_new",
    "duration",
    "paon",
    "saon",
    "street",
    "locality",
    "town",
    "district",
    "county",
    "ppd_category",
    "record_status",
)


class ImportSink(ABC):
    """Destination for validated import rows, called once per batch."""

    @abstractmethod
    def insert_batch(self, rows: Sequence[PropertySaleRecord], options: ImportOptions) -> BatchResult:
        raise NotImplementedError


class SqlPropertySaleSink(ImportSink):
    """Writes rows into ``property_sales``; one transaction per batch.

    A transaction id already stored (or repeated earlier in the same batch)
    counts as a duplicate, is overwritten when ``update_existing`` is set, and
    is reported as a failed row when duplicates are neither skipped nor updated.
    """

    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory

    def insert_batch(self, rows: Sequence[PropertySaleRecord], options: ImportOptions) -> BatchResult:
        if not rows:
            return BatchResult()
        try:
            return self._write(rows, options)
        except IntegrityError:
            logger.warning("Batch insert for import %s hit a constraint; retrying row by row", options.job_id)
            return self._write_row_by_row(rows, options)

    def _write(self, rows: Sequence[PropertySaleRecord], options: ImportOptions) -> BatchResult:
        result = BatchResult()
        with self._session_factory() as session:
            existing = self._existing(session, [row.transaction_id for row in rows])
            seen: set[str] = set()
            for row in rows:
                self._apply(session, row, options, existing, seen, result)
            session.commit()
        return result

    def _write_row_by_row(self, rows: Sequence[PropertySaleRecord], options: ImportOptions) -> BatchResult:
        result = BatchResult()
        seen: set[str] = set()
        for row in rows:
            with self._session_factory() as session:
                try:
                    existing = self._existing(session, [row.transaction_id])
                    self._apply(session, row, options, existing, seen, result)
                    session.commit()
                except SQLAlchemyError as exc:
                    session.rollback()
                    result.errors.append(f"Record {row.row_number}: {getattr(exc, 'orig', None) or exc}")
        return result

    def _existing(self, session: Session, transaction_ids: list[str]) -> dict[str, PropertySale]:
        stmt = select(PropertySale).where(PropertySale.transaction_id.in_(set(transaction_ids)))
        return {sale.transaction_id: sale for sale in session.scalars(stmt).all()}

    def _apply(
        self,
        session: Session,
        row: PropertySaleRecord,
        options: ImportOptions,
        existing: dict[str, PropertySale],
        seen: set[str],
        result: BatchResult,
    ) -> None:
        current = existing.get(row.transaction_id)
        if current is not None or row.transaction_id in seen:
            if options.update_existing and current is not None:
                for name in _UPDATABLE_FIELDS:
                    setattr(current, name, getattr(row, name))
                current.import_job_id = options.job_id
                result.updated += 1
            elif options.skip_duplicates or options.update_existing:
                result.duplicates += 1
            else:
                result.errors.append(f"Record {row.row_number}: Duplicate transaction id {row.transaction_id}")
            return

        sale = PropertySale(transaction_id=row.transaction_id, import_job_id=options.job_id)
        for name in _UPDATABLE_FIELDS:
            setattr(sale, name, getattr(row, name))
        session.add(sale)
        seen.add(row.transaction_id)
        result.inserted += 1
