"""
Per-step execution records.

The executor writes one ExecutionRecord per (plan, step) and updates it as
attempts start and finish. Records are immutable: each update replaces the
record, so a record a reader holds never changes under it while a plan is
still running.
"""
import logging
import threading
from collections import OrderedDict
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple

from ..constants import DEFAULT_EXECUTION_HISTORY_LIMIT
from .actions import ActionResult
from .plan import RemediationStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExecutionRecord:
    """Execution state of one step of one plan."""
    plan_id: str
    step_id: str
    action_name: Optional[str] = None
    status: RemediationStatus = RemediationStatus.NOT_STARTED
    attempts: int = 0
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    message: Optional[str] = None
    error: Optional[str] = None
    result: Optional[ActionResult] = None
    is_rollback: bool = False

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.started_at is None or self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "plan_id": self.plan_id,
            "step_id": self.step_id,
            "action_name": self.action_name,
            "status": self.status.value,
            "attempts": self.attempts,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_seconds": self.duration_seconds,
            "message": self.message,
            "error": self.error,
            "result": self.result.to_dict() if self.result else None,
            "is_rollback": self.is_rollback,
        }


class ExecutionTracker:
    """
    Store of ExecutionRecords: one writer path, lock-free readers.

    Writers serialize on a lock, replace the record they change and publish
    a new read-only view of the store. Readers only load that view, so they
    never wait on a plan that is writing and never see a half-updated
    record. Keeps at most ``max_records`` records; the oldest are evicted
    first.
    """

    def __init__(self, max_records: int = DEFAULT_EXECUTION_HISTORY_LIMIT):
        self.max_records = max_records
        self._records: "OrderedDict[Tuple[str, str], ExecutionRecord]" = OrderedDict()
        self._view: Mapping[Tuple[str, str], ExecutionRecord] = MappingProxyType({})
        self._write_lock = threading.Lock()

    def record_start(self, plan_id: str, step_id: str, action_name: Optional[str] = None,
                     is_rollback: bool = False) -> None:
        """Mark a new attempt of a step as in progress."""
        now = datetime.now(timezone.utc)
        with self._write_lock:
            record = self._records.get((plan_id, step_id))
            if record is None:
                record = ExecutionRecord(plan_id, step_id, action_name, is_rollback=is_rollback)
            self._store(replace(
                record,
                started_at=record.started_at or now,
                attempts=record.attempts + 1,
                status=RemediationStatus.IN_PROGRESS,
                completed_at=None,
            ))

    def record_status(self, plan_id: str, step_id: str, status: RemediationStatus,
                      message: Optional[str] = None, error: Optional[str] = None,
                      result: Optional[ActionResult] = None) -> None:
        """Update a step's status; terminal statuses also stamp completion."""
        with self._write_lock:
            record = self._records.get((plan_id, step_id)) or ExecutionRecord(plan_id, step_id)
            self._store(replace(
                record,
                status=status,
                message=message,
                error=record.error if error is None else error,
                result=record.result if result is None else result,
                completed_at=datetime.now(timezone.utc) if status.is_terminal else record.completed_at,
            ))

    def get(self, plan_id: str, step_id: str) -> Optional[ExecutionRecord]:
        return self._view.get((plan_id, step_id))

    def get_plan_records(self, plan_id: str) -> List[ExecutionRecord]:
        return [r for (pid, _), r in self._view.items() if pid == plan_id]

    def get_all(self) -> Dict[str, ExecutionRecord]:
        """All records keyed ``<plan_id>/<step_id>``."""
        return {f"{pid}/{sid}": r for (pid, sid), r in self._view.items()}

    def clear(self, plan_id: Optional[str] = None) -> None:
        with self._write_lock:
            if plan_id is None:
                self._records.clear()
            else:
                for key in [k for k in self._records if k[0] == plan_id]:
                    del self._records[key]
            self._publish()

    def __len__(self) -> int:
        return len(self._view)

    def _store(self, record: ExecutionRecord) -> None:
        key = (record.plan_id, record.step_id)
        is_new = key not in self._records
        self._records[key] = record
        if is_new:
            self._evict()
        self._publish()

    def _publish(self) -> None:
        self._view = MappingProxyType(dict(self._records))

    def _evict(self) -> None:
        while len(self._records) > self.max_records:
            (pid, sid), _ = self._records.popitem(last=False)
            logger.debug(f"Evicted execution record {pid}/{sid}")
