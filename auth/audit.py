"""
auth/audit.py -- Append-only audit log of security-relevant actions.

Every terminal outcome of a login or registration attempt becomes exactly one
row in audit_logs. The recorder is a best-effort side channel:

  - record() never raises and never waits on the database. It stamps the
    server timestamp, then hands the row to a single background worker
    thread. One worker keeps rows in the order they were recorded.
  - A failed write is logged at ERROR on "bankauth.audit" and counted in
    failed_writes. It is never allowed to change the response of the request
    it describes.
  - There is no update or delete path. Rows are immutable once written.
  - The backlog is bounded (AUDIT_MAX_PENDING). When the audit database is
    too slow to keep up, further rows are dropped and counted as failures.

flush() blocks until everything recorded so far has been written (or has
failed). close() drains the queue for at most AUDIT_CLOSE_TIMEOUT_SECONDS,
then cancels whatever is still queued and stops the worker.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import json
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, select
from sqlalchemy.engine import Engine

from auth.models import ActionStatus, ActionType, AuditEvent, AuditRecord
from auth.store import build_engine
from core.config import get_settings

logger = logging.getLogger("bankauth.audit")

_metadata = MetaData()

_audit_logs = Table(
    "audit_logs",
    _metadata,
    Column("log_id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, index=True),  # NULL for pre-authentication failures
    Column("action_type", String(50), nullable=False, index=True),
    Column("action_status", String(10), nullable=False),
    Column("ip_address", String(64)),
    Column("user_agent", Text),
    Column("details", Text),  # JSON object or NULL
    Column("created_at", String(32), nullable=False),
)

_MAX_QUERY_LIMIT = 500


class AuditRecorder:
    """Non-blocking, failure-isolated writer for audit_logs.

    Usage:
        recorder = AuditRecorder()
        recorder.record(AuditEvent(ActionType.LOGIN, ActionStatus.SUCCESS, user_id=7))
        recorder.flush()
        rows = recorder.list_records(user_id=7)
        recorder.close()
    """

    def __init__(
        self,
        db_url: str | None = None,
        timeout: float | None = None,
        max_pending: int | None = None,
        close_timeout: float | None = None,
    ) -> None:
        settings = get_settings()
        self.engine: Engine = build_engine(
            db_url or settings.database_url,
            timeout if timeout is not None else settings.db_timeout_seconds,
        )
        _metadata.create_all(self.engine)
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="audit-writer")
        self._lock = threading.Lock()
        self.failed_writes = 0
        self._pending = 0
        self._max_pending = max_pending or settings.audit_max_pending
        self._close_timeout = close_timeout if close_timeout is not None else settings.audit_close_timeout_seconds
        self._closed = False

    # ------------------------------------------------------------------
    # Write path
    # ------------------------------------------------------------------

    def record(self, event: AuditEvent) -> None:
        """Queue one audit row. Returns immediately; never raises."""
        try:
            row = {
                "user_id": event.user_id,
                "action_type": ActionType(event.action_type).value,
                "action_status": ActionStatus(event.status).value,
                "ip_address": event.ip_address or None,
                "user_agent": event.user_agent or None,
                "details": event.details,
                "created_at": datetime.now(timezone.utc).isoformat(),
            }
            with self._lock:
                backlog = self._pending
                if backlog < self._max_pending:
                    self._pending += 1
            if backlog >= self._max_pending:
                overflow = RuntimeError(f"audit backlog full ({backlog} pending)")
                self._on_failure(event.user_id, event.action_type, event.status, overflow)
                return
            try:
                self._executor.submit(self._write, row)
            except RuntimeError:
                self._release()
                raise
        except Exception as exc:
            # Bad event or executor already shut down (process is stopping).
            self._on_failure(event.user_id, event.action_type, event.status, exc)

    def _write(self, row: dict) -> None:
        try:
            values = dict(row)
            if values["details"] is not None:
                values["details"] = json.dumps(values["details"], default=str, sort_keys=True)
            with self.engine.connect() as conn:
                conn.execute(_audit_logs.insert().values(**values))
                conn.commit()
            logger.debug(
                "Audit log written user_id=%s action=%s status=%s",
                row["user_id"],
                row["action_type"],
                row["action_status"],
            )
        except Exception as exc:
            self._on_failure(row["user_id"], row["action_type"], row["action_status"], exc)
        finally:
            self._release()

    def _release(self) -> None:
        with self._lock:
            self._pending -= 1

    def _on_failure(self, user_id, action_type, status, exc: Exception) -> None:
        with self._lock:
            self.failed_writes += 1
        logger.error(
            "Failed to write audit log user_id=%s action=%s status=%s",
            user_id,
            getattr(action_type, "value", action_type),
            getattr(status, "value", status),
            exc_info=exc,
        )

    def flush(self, timeout: float | None = None) -> None:
        """Block until every row recorded before this call has been handled."""
        self._executor.submit(lambda: None).result(timeout=timeout)

    # ------------------------------------------------------------------
    # Query path
    # ------------------------------------------------------------------

    def list_records(
        self,
        user_id: int | None = None,
        action_type: ActionType | str | None = None,
        status: ActionStatus | str | None = None,
        limit: int = 100,
    ) -> list[AuditRecord]:
        """Return audit rows newest first, optionally filtered.

        limit is clamped to 1..500.
        """
        query = select(_audit_logs)
        if user_id is not None:
            query = query.where(_audit_logs.c.user_id == user_id)
        if action_type is not None:
            query = query.where(_audit_logs.c.action_type == ActionType(action_type).value)
        if status is not None:
            query = query.where(_audit_logs.c.action_status == ActionStatus(status).value)
        limit = max(1, min(limit, _MAX_QUERY_LIMIT))
        query = query.order_by(_audit_logs.c.log_id.desc()).limit(limit)
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_record(r) for r in rows]

    def close(self, timeout: float | None = None) -> None:
        """Drain pending writes for at most timeout seconds, then stop the worker.

        Rows still queued when the timeout expires are dropped and counted in
        failed_writes. A write already in progress is allowed to finish.
        """
        if self._closed:
            return
        self._closed = True
        try:
            self.flush(timeout=timeout if timeout is not None else self._close_timeout)
        except FutureTimeoutError:
            logger.warning("Audit backlog not drained at shutdown; cancelling queued rows")
        self._executor.shutdown(wait=True, cancel_futures=True)
        with self._lock:
            dropped = self._pending
            self._pending = 0
            self.failed_writes += dropped
        if dropped:
            logger.error("Audit recorder closed with %d unwritten rows; they were dropped", dropped)
        self.engine.dispose()


def _row_to_record(row) -> AuditRecord:
    return AuditRecord(
        id=row.log_id,
        user_id=row.user_id,
        action_type=row.action_type,
        status=row.action_status,
        ip_address=row.ip_address,
        user_agent=row.user_agent,
        details=json.loads(row.details) if row.details else None,
        created_at=row.created_at,
    )
