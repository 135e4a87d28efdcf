"""
Audit Event Log
Best-effort append-only trail in the `analytics` table. Writes run on a
background worker; a failed write is logged and resolves to False, it never
reaches the caller.
"""

import json
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime
from typing import Any, Dict, Optional

from leadcapture.db.connection import Database
from leadcapture.errors import AuditWriteFailed
from leadcapture.models import AuditEvent

logger = logging.getLogger(__name__)


class AuditLog:

    def __init__(self, db: Database, executor: Optional[ThreadPoolExecutor] = None):
        self.db = db
        self._executor = executor or ThreadPoolExecutor(max_workers=1, thread_name_prefix='audit')
        self._pending = []
        self._pending_lock = threading.Lock()

    def record(self, evento: str, dados: Optional[Dict[str, Any]] = None,
               ip_address: Optional[str] = None, user_agent: Optional[str] = None) -> Future:
        """Queue one audit event. The returned future resolves to True/False; callers may ignore it."""
        event = AuditEvent(
            evento=evento,
            dados=dados or {},
            ip_address=ip_address,
            user_agent=user_agent,
            data_evento=datetime.now(self.db.dialect.tz),
        )
        try:
            future = self._executor.submit(self.write, event)
        except RuntimeError as exc:
            # Executor already shut down
            logger.error(f"{AuditWriteFailed.__name__}: cannot queue '{evento}': {exc}")
            future = Future()
            future.set_result(False)
            return future
        with self._pending_lock:
            self._pending = [f for f in self._pending if not f.done()]
            self._pending.append(future)
        return future

    def write(self, event: AuditEvent) -> bool:
        """Insert one event synchronously. Returns False instead of raising."""
        try:
            self.db.execute(
                "INSERT INTO analytics (evento, dados, ip_address, user_agent, data_evento) "
                "VALUES (?, ?, ?, ?, ?)",
                (
                    event.evento,
                    json.dumps(event.dados, default=str),
                    event.ip_address,
                    event.user_agent,
                    self.db.dialect.to_db_timestamp(event.data_evento),
                ),
            )
            return True
        except Exception as exc:
            failure = AuditWriteFailed(f"'{event.evento}' not recorded: {exc}")
            logger.error(f"{type(failure).__name__}: {failure}")
            return False

    def flush(self, timeout: Optional[float] = None) -> None:
        """Wait for queued writes to finish."""
        with self._pending_lock:
            pending, self._pending = self._pending, []
        try:
            for future in pending:
                future.result(timeout=timeout)
        finally:
            unfinished = [f for f in pending if not f.done()]
            if unfinished:
                with self._pending_lock:
                    self._pending = unfinished + self._pending

    def close(self) -> None:
        self._executor.shutdown(wait=True)
