# Overview: Service-layer operations for the stock audit trail; append-only writes and history queries.

"""
Stock Audit Invariants (authoritative)

- Append-only: one row per lot mutation, never updated or deleted.
- Written inside the same unit of work as the mutation it documents, so a
  rolled-back mutation leaves no audit row behind.
- Best-effort: an audit write failure never aborts the stock mutation. The
  failed row is rolled back on its own savepoint and the failure is logged.
"""

from __future__ import annotations

from collections import defaultdict

from flask import current_app

from ..extensions import db
from ..models import StockAuditLog
from stockpos.time_utils import hours_ago, utcnow


class StockAuditSink:
    """Audit sink bound to the session of one unit of work."""

    def __init__(self, session):
        self.session = session

    def record(self, old_lot, new_lot, operation_type: str) -> StockAuditLog | None:
        """
        Append one audit record. Never raises.

        old_lot is None for INSERT; new_lot is None for DELETE.
        """
        ref = new_lot if new_lot is not None else old_lot
        try:
            if ref is None:
                raise ValueError("audit record needs at least one lot snapshot")
            if operation_type not in StockAuditLog.OPERATIONS:
                raise ValueError(f"unknown audit operation {operation_type!r}")

            with self.session.begin_nested():
                entry = StockAuditLog(
                    lot_id=ref.id,
                    product_id=ref.product_id,
                    store_id=ref.store_id,
                    operation_type=operation_type,
                    old_quantity=old_lot.quantity if old_lot is not None else None,
                    new_quantity=new_lot.quantity if new_lot is not None else 0,
                    old_version=old_lot.version if old_lot is not None else None,
                    new_version=new_lot.version if new_lot is not None else None,
                    modified_at=utcnow(),
                )
                self.session.add(entry)
        except Exception:
            current_app.logger.exception(
                "Failed to write stock audit record (%s, lot %s)",
                operation_type,
                getattr(ref, "id", None),
            )
            return None

        current_app.logger.debug(
            "Stock audit: %s lot %s %s -> %s",
            operation_type,
            ref.id,
            old_lot.quantity if old_lot is not None else "NULL",
            new_lot.quantity if new_lot is not None else "NULL",
        )
        return entry

    def record_insert(self, new_lot) -> StockAuditLog | None:
        return self.record(None, new_lot, StockAuditLog.OPERATION_INSERT)

    def record_update(self, old_lot, new_lot) -> StockAuditLog | None:
        return self.record(old_lot, new_lot, StockAuditLog.OPERATION_UPDATE)

    def record_delete(self, old_lot) -> StockAuditLog | None:
        return self.record(old_lot, None, StockAuditLog.OPERATION_DELETE)


# =============================================================================
# HISTORY QUERIES
# =============================================================================

def _newest_first(query):
    return query.order_by(StockAuditLog.modified_at.desc(), StockAuditLog.id.desc())


def get_product_history(product_id: int) -> list[StockAuditLog]:
    return _newest_first(db.session.query(StockAuditLog).filter_by(product_id=product_id)).all()


def get_lot_history(lot_id: int) -> list[StockAuditLog]:
    return _newest_first(db.session.query(StockAuditLog).filter_by(lot_id=lot_id)).all()


def get_recent_modifications(store_id: int, hours: int = 24) -> list[StockAuditLog]:
    since = hours_ago(hours)
    query = db.session.query(StockAuditLog).filter(
        StockAuditLog.store_id == store_id,
        StockAuditLog.modified_at >= since,
    )
    return _newest_first(query).all()


def get_logs_by_operation(store_id: int, operation_type: str) -> list[StockAuditLog]:
    if operation_type not in StockAuditLog.OPERATIONS:
        raise ValueError(f"operation_type must be one of {StockAuditLog.OPERATIONS}")
    query = db.session.query(StockAuditLog).filter_by(store_id=store_id, operation_type=operation_type)
    return _newest_first(query).all()


def get_concurrency_statistics(store_id: int, hours: int = 24) -> list[dict]:
    """
    Hourly activity buckets in which more than one distinct lot was modified.

    Bucketing happens in Python so the query stays portable across SQLite and
    PostgreSQL (no dialect-specific date functions).
    """
    since = hours_ago(hours)
    rows = (
        db.session.query(StockAuditLog.lot_id, StockAuditLog.modified_at)
        .filter(StockAuditLog.store_id == store_id, StockAuditLog.modified_at >= since)
        .all()
    )

    lots_by_bucket: dict[tuple, set[int]] = defaultdict(set)
    ops_by_bucket: dict[tuple, int] = defaultdict(int)
    for lot_id, modified_at in rows:
        bucket = (modified_at.date(), modified_at.hour)
        lots_by_bucket[bucket].add(lot_id)
        ops_by_bucket[bucket] += 1

    stats = [
        {
            "activity_date": bucket[0].isoformat(),
            "activity_hour": bucket[1],
            "distinct_lots": len(lot_ids),
            "total_operations": ops_by_bucket[bucket],
        }
        for bucket, lot_ids in lots_by_bucket.items()
        if len(lot_ids) > 1
    ]
    stats.sort(key=lambda s: (s["activity_date"], s["activity_hour"]), reverse=True)
    return stats
