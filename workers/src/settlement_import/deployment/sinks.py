"""
Persistence sinks for deployed import data
"""
import copy
import itertools
import threading
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set

import structlog
from supabase import Client, create_client

from ..config import settings
from ..error_handler import PersistenceError

logger = structlog.get_logger(__name__)

Record = Dict[str, Any]


@dataclass(frozen=True)
class BatchReceipt:
    """Proof of one committed batch, enough to revert it"""
    receipt_id: str
    table: str
    record_count: int
    record_ids: tuple = ()
    committed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class Snapshot:
    """Backup of target tables taken before a deployment writes"""
    snapshot_id: str
    tables: tuple
    data: Dict[str, List[Record]] = field(default_factory=dict, repr=False)
    taken_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    # (record id, record) pairs per table, for sinks that restore original ids
    keyed: Optional[Dict[str, list]] = field(default=None, repr=False)

    @property
    def record_count(self) -> int:
        return sum(len(rows) for rows in self.data.values())


class PersistenceSink(ABC):
    """Batched writes with backup and rollback"""

    @abstractmethod
    def snapshot(self, tables: Sequence[str]) -> Snapshot:
        """Back up the given tables"""

    @abstractmethod
    def write_batch(self, table: str, records: Sequence[Record]) -> BatchReceipt:
        """Commit one batch; raises PersistenceError when the batch is rejected"""

    @abstractmethod
    def rollback(self, receipts: Sequence[BatchReceipt], snapshot: Optional[Snapshot] = None) -> None:
        """Revert committed batches, restoring snapshot tables when one is given"""

    @abstractmethod
    def clear(self, table: str) -> int:
        """Delete every record of a table; returns the number removed"""


class InMemorySink(PersistenceSink):
    """Process-local sink for dry runs, drills and tests"""

    def __init__(
        self,
        initial: Optional[Dict[str, Iterable[Record]]] = None,
        fail_on_batches: Optional[Iterable[int]] = None,
        fail_on_rollback: bool = False,
    ):
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self._tables: Dict[str, Dict[int, Record]] = {}
        self._receipts: Dict[str, BatchReceipt] = {}
        self._batch_calls = 0
        # 1-based write_batch call numbers that raise
        self.fail_on_batches: Set[int] = set(fail_on_batches or ())
        self.fail_on_rollback = fail_on_rollback
        for table, records in (initial or {}).items():
            self._tables[table] = {next(self._ids): dict(r) for r in records}

    @property
    def batch_calls(self) -> int:
        with self._lock:
            return self._batch_calls

    def records(self, table: str) -> List[Record]:
        with self._lock:
            return [dict(r) for r in self._tables.get(table, {}).values()]

    def count(self, table: Optional[str] = None) -> int:
        with self._lock:
            if table is not None:
                return len(self._tables.get(table, {}))
            return sum(len(rows) for rows in self._tables.values())

    def snapshot(self, tables: Sequence[str]) -> Snapshot:
        with self._lock:
            data = {t: copy.deepcopy(list(self._tables.get(t, {}).items())) for t in tables}
        snap = Snapshot(
            snapshot_id=str(uuid.uuid4()),
            tables=tuple(tables),
            data={t: [dict(r) for _, r in rows] for t, rows in data.items()},
            keyed=data,
        )
        logger.info("Snapshot taken", snapshot_id=snap.snapshot_id, tables=list(tables),
                    records=snap.record_count)
        return snap

    def write_batch(self, table: str, records: Sequence[Record]) -> BatchReceipt:
        with self._lock:
            self._batch_calls += 1
            if self._batch_calls in self.fail_on_batches:
                raise PersistenceError(f"Injected failure on batch call {self._batch_calls}")

            rows = self._tables.setdefault(table, {})
            ids = []
            for record in records:
                record_id = next(self._ids)
                rows[record_id] = dict(record)
                ids.append(record_id)

            receipt = BatchReceipt(
                receipt_id=str(uuid.uuid4()),
                table=table,
                record_count=len(ids),
                record_ids=tuple(ids),
            )
            self._receipts[receipt.receipt_id] = receipt
            return receipt

    def rollback(self, receipts: Sequence[BatchReceipt], snapshot: Optional[Snapshot] = None) -> None:
        with self._lock:
            if self.fail_on_rollback:
                raise PersistenceError("Injected rollback failure")

            for receipt in receipts:
                rows = self._tables.get(receipt.table, {})
                for record_id in receipt.record_ids:
                    rows.pop(record_id, None)
                self._receipts.pop(receipt.receipt_id, None)

            if snapshot is not None:
                for table in snapshot.tables:
                    if snapshot.keyed is not None:
                        self._tables[table] = dict(copy.deepcopy(snapshot.keyed[table]))
                    else:
                        self._tables[table] = {next(self._ids): dict(r) for r in snapshot.data[table]}

        logger.info("Rollback complete", batches=len(receipts),
                    snapshot_id=snapshot.snapshot_id if snapshot else None)

    def clear(self, table: str) -> int:
        with self._lock:
            removed = len(self._tables.get(table, {}))
            self._tables[table] = {}
        return removed


class SupabaseSink(PersistenceSink):
    """Sink backed by Supabase tables"""

    def __init__(self, client: Optional[Client] = None, primary_key: Optional[str] = None):
        self._client = client
        self.primary_key = primary_key or settings.supabase_primary_key

    def get_client(self) -> Client:
        """Get or create Supabase client"""
        if self._client is None:
            self._client = create_client(settings.supabase_url, settings.supabase_service_role_key)
        return self._client

    def snapshot(self, tables: Sequence[str]) -> Snapshot:
        client = self.get_client()
        data = {}
        try:
            for table in tables:
                data[table] = client.table(table).select('*').execute().data or []
        except Exception as e:
            logger.error("Snapshot failed", tables=list(tables), error=str(e))
            raise PersistenceError(f"Snapshot failed: {e}") from e

        snap = Snapshot(snapshot_id=str(uuid.uuid4()), tables=tuple(tables), data=data)
        logger.info("Snapshot taken", snapshot_id=snap.snapshot_id, tables=list(tables),
                    records=snap.record_count)
        return snap

    def write_batch(self, table: str, records: Sequence[Record]) -> BatchReceipt:
        try:
            result = self.get_client().table(table).insert(list(records)).execute()
        except Exception as e:
            logger.error("Batch insert failed", table=table, records=len(records), error=str(e))
            raise PersistenceError(f"Insert into {table} failed: {e}") from e

        inserted = result.data or []
        record_ids = tuple(row[self.primary_key] for row in inserted if row.get(self.primary_key) is not None)
        if len(record_ids) != len(records):
            logger.warning("Inserted rows missing primary key; batch cannot be rolled back",
                           table=table, records=len(records), record_ids=len(record_ids),
                           primary_key=self.primary_key)
        return BatchReceipt(
            receipt_id=str(uuid.uuid4()),
            table=table,
            record_count=len(records),
            record_ids=record_ids,
        )

    def rollback(self, receipts: Sequence[BatchReceipt], snapshot: Optional[Snapshot] = None) -> None:
        untraceable = [r for r in receipts if len(r.record_ids) != r.record_count]
        if untraceable:
            raise PersistenceError(
                f"Rollback failed: {len(untraceable)} batch(es) have no {self.primary_key} "
                f"for every inserted row"
            )

        client = self.get_client()
        try:
            for receipt in receipts:
                if receipt.record_ids:
                    client.table(receipt.table).delete().in_(self.primary_key, list(receipt.record_ids)).execute()

            if snapshot is not None:
                for table in snapshot.tables:
                    self.clear(table)
                    rows = snapshot.data.get(table, [])
                    for start in range(0, len(rows), settings.default_batch_size):
                        client.table(table).insert(rows[start:start + settings.default_batch_size]).execute()
        except PersistenceError:
            raise
        except Exception as e:
            logger.error("Rollback failed", batches=len(receipts), error=str(e))
            raise PersistenceError(f"Rollback failed: {e}") from e

        logger.info("Rollback complete", batches=len(receipts),
                    snapshot_id=snapshot.snapshot_id if snapshot else None)

    def clear(self, table: str) -> int:
        try:
            result = self.get_client().table(table).delete().not_.is_(self.primary_key, 'null').execute()
        except Exception as e:
            logger.error("Table clear failed", table=table, error=str(e))
            raise PersistenceError(f"Clearing {table} failed: {e}") from e
        return len(result.data or [])
