"""
Sync orchestrator - drives one reconciliation run.

Run states:
idle -> listing -> planning -> executing -> completed | completed_with_errors

Execution order:
1. Upload archives missing remotely
2. Prune remote overflow
3. Prune local overflow

Each phase finishes before the next starts. Operations inside a phase run on
a bounded thread pool; a failing operation is recorded and the run goes on.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, List, Optional, Dict, Any

from .archive import Archive
from .errors import StorageError
from .local import LocalArchiveRepository
from .reconcile import RetentionPolicy, SyncPlan, plan_sync, remote_overflow
from .storage import ObjectStore


logger = logging.getLogger(__name__)

DEFAULT_MAX_WORKERS = 4


class RunState(str, Enum):
    IDLE = 'idle'
    LISTING = 'listing'
    PLANNING = 'planning'
    EXECUTING = 'executing'
    COMPLETED = 'completed'
    COMPLETED_WITH_ERRORS = 'completed_with_errors'


class Operation(str, Enum):
    LIST_LOCAL = 'list_local'
    LIST_REMOTE = 'list_remote'
    UPLOAD = 'upload'
    DELETE_REMOTE = 'delete_remote'
    DELETE_LOCAL = 'delete_local'


@dataclass
class OperationResult:
    """Outcome of one file operation."""

    name: str
    operation: Operation
    error_kind: Optional[str] = None
    message: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error_kind is None

    def to_dict(self) -> Dict[str, Any]:
        result = {'name': self.name, 'operation': self.operation.value}
        if not self.ok:
            result['error_kind'] = self.error_kind
        if self.message:
            result['message'] = self.message
        return result


@dataclass
class SyncReport:
    """Structured result of a run."""

    state: RunState = RunState.IDLE
    plan: SyncPlan = field(default_factory=SyncPlan)
    remote_enabled: bool = False
    cancelled: bool = False
    succeeded: List[OperationResult] = field(default_factory=list)
    failures: List[OperationResult] = field(default_factory=list)
    skipped: List[OperationResult] = field(default_factory=list)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def count(self, operation: Operation) -> int:
        return sum(1 for r in self.succeeded if r.operation == operation)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'state': self.state.value,
            'remote_enabled': self.remote_enabled,
            'cancelled': self.cancelled,
            'plan': self.plan.to_dict(),
            'succeeded': [r.to_dict() for r in self.succeeded],
            'failures': [r.to_dict() for r in self.failures],
            'skipped': [r.to_dict() for r in self.skipped],
            'started_at': self.started_at.isoformat() if self.started_at else None,
            'completed_at': self.completed_at.isoformat() if self.completed_at else None
        }


def _error_kind(error: Exception, operation: Operation) -> str:
    if isinstance(error, StorageError):
        return error.kind
    if operation in (Operation.DELETE_LOCAL, Operation.LIST_LOCAL):
        return 'LocalIOError'
    return 'StoreIOError'


class SyncOrchestrator:
    """
    Reconciles a local archive repository against a remote object store.

    Callers must not run two orchestrators against the same backup directory
    or remote prefix at once.
    """

    def __init__(self, local: LocalArchiveRepository, remote: ObjectStore,
                 policy: RetentionPolicy, max_workers: int = DEFAULT_MAX_WORKERS,
                 log: Optional[Callable[[str], None]] = None):
        """
        Initialize orchestrator.

        Args:
            local: Local archive repository
            remote: Remote object store
            policy: Retention policy applied to each location
            max_workers: Upper bound on concurrent operations within a phase
            log: Optional callback receiving progress messages
        """
        self.local = local
        self.remote = remote
        self.policy = policy
        self.max_workers = max(1, max_workers)
        self.report = SyncReport()
        self._log_callback = log
        self._cancel_event = threading.Event()
        self._lock = threading.Lock()

    @property
    def state(self) -> RunState:
        return self.report.state

    def cancel(self):
        """Stop scheduling new operations. In-flight transfers finish."""
        self._cancel_event.set()
        self._log("Cancellation requested")

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def run(self) -> SyncReport:
        """
        Execute a full run.

        Returns:
            SyncReport in state completed or completed_with_errors
        """
        self.report = SyncReport(started_at=datetime.utcnow())

        self._set_state(RunState.LISTING)
        local_archives, remote_archives = self._gather()

        self._set_state(RunState.PLANNING)
        plan = plan_sync(local_archives, remote_archives, self.policy)
        self.report.plan = plan
        self._log(
            f"Plan: {len(plan.to_upload)} to upload, "
            f"{len(plan.to_delete_remote)} remote to prune, "
            f"{len(plan.to_delete_local)} local to prune"
        )

        self._set_state(RunState.EXECUTING)
        self._execute(plan, local_archives, remote_archives)

        self.report.cancelled = self.cancelled
        self.report.completed_at = datetime.utcnow()
        self._set_state(RunState.COMPLETED_WITH_ERRORS if self.report.failures else RunState.COMPLETED)
        self._log(
            f"Run finished: {len(self.report.succeeded)} succeeded, "
            f"{len(self.report.failures)} failed, {len(self.report.skipped)} skipped"
        )
        return self.report

    def _gather(self):
        try:
            local_archives = self.local.list()
        except Exception as e:
            self._record_failure('*', Operation.LIST_LOCAL, e)
            local_archives = []

        self.report.remote_enabled = self.remote.is_enabled()
        if not self.report.remote_enabled:
            self._log("Remote storage disabled, running local-only")
            return local_archives, None

        try:
            remote_archives = self.remote.list()
        except Exception as e:
            # Without a remote listing nothing can be uploaded or pruned remotely
            self._record_failure('*', Operation.LIST_REMOTE, e)
            return local_archives, None

        self._log(f"Found {len(local_archives)} local and {len(remote_archives)} remote archives")
        return local_archives, remote_archives

    def _execute(self, plan: SyncPlan, local_archives: List[Archive],
                 remote_archives: Optional[List[Archive]]):
        self._run_phase(Operation.UPLOAD, plan.to_upload, self._upload)

        uploaded = {r.name for r in self.report.succeeded if r.operation == Operation.UPLOAD}
        not_uploaded = set(plan.to_upload) - uploaded

        # Overflow over the remote listing plus the uploads that succeeded
        if remote_archives is not None:
            remote_deletes = remote_overflow(
                remote_archives,
                [a for a in local_archives if a.name in uploaded],
                self.policy
            )
            if remote_deletes != plan.to_delete_remote:
                self._log(f"Remote prune adjusted after uploads: {len(remote_deletes)} to delete")
            self._run_phase(Operation.DELETE_REMOTE, remote_deletes, self.remote.delete)

        # Keep local copies that never made it off-site
        local_deletes = []
        for name in plan.to_delete_local:
            if name in not_uploaded:
                self._record_skip(name, Operation.DELETE_LOCAL, "upload did not complete")
            else:
                local_deletes.append(name)
        self._run_phase(Operation.DELETE_LOCAL, local_deletes, self.local.delete)

    def _upload(self, name: str):
        self.remote.upload(self.local.path_for(name), name)

    def _run_phase(self, operation: Operation, names: List[str], action: Callable[[str], None]):
        if not names:
            return

        self._log(f"{operation.value}: {len(names)} archive(s)")

        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(names))) as pool:
            for name in names:
                pool.submit(self._perform, operation, name, action)

    def _perform(self, operation: Operation, name: str, action: Callable[[str], None]):
        if self.cancelled:
            self._record_skip(name, operation, "run cancelled")
            return

        try:
            action(name)
        except Exception as e:
            self._record_failure(name, operation, e)
            return

        with self._lock:
            self.report.succeeded.append(OperationResult(name, operation))
        self._log(f"{operation.value} {name}: ok")

    def _record_failure(self, name: str, operation: Operation, error: Exception):
        result = OperationResult(name, operation, _error_kind(error, operation), str(error))
        with self._lock:
            self.report.failures.append(result)
        logger.warning(f"{operation.value} {name} failed: {error}")
        self._log(f"{operation.value} {name}: failed ({result.error_kind}): {error}")

    def _record_skip(self, name: str, operation: Operation, reason: str):
        with self._lock:
            self.report.skipped.append(OperationResult(name, operation, message=reason))
        self._log(f"{operation.value} {name}: skipped ({reason})")

    def _set_state(self, state: RunState):
        self.report.state = state
        logger.debug(f"Sync run state: {state.value}")

    def _log(self, message: str):
        logger.info(message)
        if self._log_callback:
            self._log_callback(message)
