"""
Audit sinks
===========
Every triage mutation and every merge call emits one AuditRecord.
Emission is guaranteed; storage is up to the sink.
"""

import json
import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from authority.models import AuditRecord

logger = logging.getLogger(__name__)


class AuditSink(ABC):

    @abstractmethod
    def emit(self, record: AuditRecord) -> None:
        pass

    def record(
        self,
        operation: str,
        actor_id: str,
        entity_type: str,
        entity_id: str,
        changes: Optional[Dict[str, Any]] = None
    ) -> AuditRecord:
        """Build and emit a record in one call"""
        audit_record = AuditRecord(
            operation=operation,
            actor_id=actor_id,
            entity_type=entity_type,
            entity_id=entity_id,
            changes=changes or {},
        )
        self.emit(audit_record)
        return audit_record


class LoggingAuditSink(AuditSink):
    """Writes each record as one JSON line on the 'authority.audit' logger"""

    def __init__(self, logger_name: str = 'authority.audit'):
        self._logger = logging.getLogger(logger_name)

    def emit(self, record: AuditRecord) -> None:
        self._logger.info(json.dumps(record.to_dict(), default=str, sort_keys=True))


class RepositoryAuditSink(AuditSink):
    """Persists records through the catalog repository's audit_log table"""

    def __init__(self, repository, also_log: bool = True):
        self.repository = repository
        self._log_sink = LoggingAuditSink() if also_log else None

    def emit(self, record: AuditRecord) -> None:
        self.repository.record_audit(record)
        if self._log_sink:
            self._log_sink.emit(record)


class InMemoryAuditSink(AuditSink):
    """Keeps records in a list; used by tests and dry runs"""

    def __init__(self):
        self.records: List[AuditRecord] = []
        self._lock = threading.Lock()

    def emit(self, record: AuditRecord) -> None:
        with self._lock:
            self.records.append(record)

    def for_entity(self, entity_id: str) -> List[AuditRecord]:
        with self._lock:
            return [r for r in self.records if r.entity_id == entity_id]

    def operations(self) -> List[str]:
        with self._lock:
            return [r.operation for r in self.records]
