"""Dry-run capture of computed NetSuite payloads.

In dry-run mode the item sync builds the exact payload it would push, then
stores it here together with a payload validation verdict and a simulated
RESTlet response instead of calling NetSuite. Records are write-once;
operators browse and purge them through the API and CLI.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import delete, func
from sqlalchemy.orm import Session

from opms_sync.db.models import DryRunRecord, utc_iso_offset
from opms_sync.services.restlet_simulator import (
    RestletValidationSimulator,
    SimulationResult,
)

logger = logging.getLogger(__name__)

PAYLOAD_REQUIRED_FIELDS: tuple[str, ...] = (
    "itemId",
    "custitem_opms_item_id",
    "custitem_opms_prod_id",
    "displayname",
)


@dataclass
class PayloadValidation:
    """Outcome of validate_payload().

    status is ``passed`` with no findings, ``partial`` with warnings only,
    and ``failed`` as soon as there is one error.
    """

    status: str
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def error_text(self) -> str | None:
        return "; ".join(self.errors) if self.errors else None


def validate_payload(payload: dict[str, Any]) -> PayloadValidation:
    """Check a payload with the same rules the live sync applies."""
    errors: list[str] = []
    warnings: list[str] = []

    for name in PAYLOAD_REQUIRED_FIELDS:
        if not payload.get(name):
            errors.append(f"Missing required field: {name}")

    for name in ("custitem_opms_item_id", "custitem_opms_prod_id", "vendor"):
        value = payload.get(name)
        if value and (isinstance(value, bool) or not isinstance(value, (int, float))):
            errors.append(f"{name} must be a number")

    displayname = payload.get("displayname")
    if isinstance(displayname, str) and displayname and ":" not in displayname:
        warnings.append('Display name should follow "Product: Color" format')

    if errors:
        status = "failed"
    elif warnings:
        status = "partial"
    else:
        status = "passed"
    return PayloadValidation(status=status, errors=errors, warnings=warnings)


class DryRunRecorder:
    """Stores and queries dry-run captures.

    Attributes:
        db: SQLAlchemy session for database operations.
        simulator: RESTlet simulator used when no verdict is supplied.
    """

    def __init__(
        self, db: Session, simulator: RestletValidationSimulator | None = None
    ) -> None:
        self.db = db
        self.simulator = simulator or RestletValidationSimulator()

    validate_payload = staticmethod(validate_payload)

    def record(
        self,
        payload: dict[str, Any],
        opms_item_id: int | None,
        opms_item_code: str | None,
        opms_product_id: int | None,
        sync_type: str = "item_sync",
        sync_trigger: str | None = None,
        validation: PayloadValidation | None = None,
        simulated: SimulationResult | None = None,
    ) -> DryRunRecord:
        """Capture one computed payload.

        Args:
            payload: The RESTlet request body that would have been sent.
            opms_item_id: OPMS item id.
            opms_item_code: OPMS item code.
            opms_product_id: OPMS product id.
            sync_type: Kind of sync that produced the payload.
            sync_trigger: What triggered it (queue trigger source, CLI, ...).
            validation: Precomputed payload validation; computed if None.
            simulated: Precomputed simulator verdict; computed if None.

        Returns:
            The stored DryRunRecord.
        """
        payload_json = json.dumps(payload, default=str)
        validation = validation or validate_payload(payload)
        simulated = simulated or self.simulator.simulate(payload)

        record = DryRunRecord(
            opms_item_id=opms_item_id,
            opms_item_code=opms_item_code,
            opms_product_id=opms_product_id,
            sync_type=sync_type,
            sync_trigger=sync_trigger,
            actual_json_payload=payload_json,
            payload_size_bytes=len(payload_json.encode("utf-8")),
            field_count=len(payload),
            validation_status=validation.status,
            validation_errors=validation.error_text,
            simulated_restlet_response=json.dumps(simulated.response, default=str),
            would_succeed=simulated.would_succeed,
            simulated_errors="; ".join(simulated.errors) if simulated.errors else None,
        )
        self.db.add(record)
        self.db.commit()
        self.db.refresh(record)
        logger.info(
            "Stored dry-run payload %s for %s (%d bytes, %d fields, %s)",
            record.id, opms_item_code, record.payload_size_bytes,
            record.field_count, record.validation_status,
        )
        return record

    # Queries

    def get_by_item_id(self, opms_item_id: int, limit: int = 10) -> list[DryRunRecord]:
        return (
            self.db.query(DryRunRecord)
            .filter(DryRunRecord.opms_item_id == opms_item_id)
            .order_by(DryRunRecord.created_at.desc(), DryRunRecord.id.desc())
            .limit(limit)
            .all()
        )

    def get_by_item_code(self, opms_item_code: str, limit: int = 10) -> list[DryRunRecord]:
        return (
            self.db.query(DryRunRecord)
            .filter(DryRunRecord.opms_item_code == opms_item_code)
            .order_by(DryRunRecord.created_at.desc(), DryRunRecord.id.desc())
            .limit(limit)
            .all()
        )

    def get_recent(
        self, limit: int = 50, sync_type: str | None = None
    ) -> list[DryRunRecord]:
        query = self.db.query(DryRunRecord)
        if sync_type is not None:
            query = query.filter(DryRunRecord.sync_type == sync_type)
        return (
            query.order_by(DryRunRecord.created_at.desc(), DryRunRecord.id.desc())
            .limit(limit)
            .all()
        )

    def get_statistics(self) -> dict[str, Any]:
        """Aggregate captures overall and per (sync_type, validation_status)."""
        totals = self.db.query(
            func.count(DryRunRecord.id),
            func.count(func.distinct(DryRunRecord.opms_item_id)),
            func.count(func.distinct(DryRunRecord.opms_product_id)),
            func.avg(DryRunRecord.payload_size_bytes),
            func.avg(DryRunRecord.field_count),
            func.min(DryRunRecord.created_at),
            func.max(DryRunRecord.created_at),
        ).one()
        groups = (
            self.db.query(
                DryRunRecord.sync_type,
                DryRunRecord.validation_status,
                func.count(DryRunRecord.id),
            )
            .group_by(DryRunRecord.sync_type, DryRunRecord.validation_status)
            .order_by(DryRunRecord.sync_type, DryRunRecord.validation_status)
            .all()
        )
        would_succeed = (
            self.db.query(func.count(DryRunRecord.id))
            .filter(DryRunRecord.would_succeed.is_(True))
            .scalar()
        )
        total, items, products, avg_size, avg_fields, earliest, latest = totals
        return {
            "total_payloads": total,
            "unique_items": items,
            "unique_products": products,
            "avg_payload_size": round(float(avg_size or 0), 2),
            "avg_field_count": round(float(avg_fields or 0), 2),
            "would_succeed": would_succeed or 0,
            "earliest_payload": earliest,
            "latest_payload": latest,
            "breakdown": [
                {"sync_type": sync_type, "validation_status": status, "count": count}
                for sync_type, status, count in groups
            ],
        }

    # Deletes

    def _delete(self, *criteria) -> int:
        stmt = delete(DryRunRecord)
        if criteria:
            stmt = stmt.where(*criteria)
        result = self.db.execute(stmt)
        self.db.commit()
        return result.rowcount

    def delete_by_id(self, record_id: int) -> bool:
        return self._delete(DryRunRecord.id == record_id) > 0

    def delete_by_item(self, opms_item_id: int) -> int:
        return self._delete(DryRunRecord.opms_item_id == opms_item_id)

    def delete_by_sync_type(self, sync_type: str) -> int:
        return self._delete(DryRunRecord.sync_type == sync_type)

    def cleanup_older_than(self, days: int = 30) -> int:
        """Delete captures older than ``days`` days."""
        deleted = self._delete(DryRunRecord.created_at < utc_iso_offset(-days * 86400))
        if deleted:
            logger.info("Cleaned up %d dry-run payloads older than %d days", deleted, days)
        return deleted

    def delete_all(self) -> int:
        deleted = self._delete()
        logger.warning("Deleted all %d dry-run payloads", deleted)
        return deleted
