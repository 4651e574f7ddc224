"""
Remediation engine for ADAPT-Heal.

Runs the whole control flow for one incident:

    ErrorContext -> RemediationAnalyzer (graph + advisory, ranked strategies)
                 -> PlanManager (plan + rollback plan, risk, approval gate)
                 -> RemediationExecutor (validate, run, retry, roll back)

and keeps the history of every remediation plus the ones waiting for
approval.

Classes:
    RemediationEngine: Core remediation orchestrator
    RemediationResult: Execution result
    ExecutionStatus: Execution status enum

Example:
    >>> from adapt_heal.remediation import RemediationEngine
    >>> engine = RemediationEngine()
    >>> engine.register_strategy(restart_strategy)
    >>> result = await engine.remediate(context, auto_approve=False)
    >>> if result.status == ExecutionStatus.PENDING_APPROVAL:
    ...     result = await engine.approve(result.execution_id)
"""

import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from ..advisory.client import AdvisoryClient, create_advisory_client
from ..config import HealConfig
from ..constants import DEFAULT_EXECUTION_HISTORY_LIMIT
from ..exceptions import RegistryError
from ..logging_context import LoggingContext
from ..metrics import RemediationMetricsSink
from ..models import ErrorContext
from .analyzer import RemediationAnalysis, RemediationAnalyzer
from .executor import PlanExecutionResult, RemediationExecutor
from .plan import RemediationPlan, RemediationStatus
from .plan_manager import PlanManager
from .registry import StrategyMetadata, StrategyRegistry
from .risk import RiskAssessor
from .strategies import RemediationStrategy
from .validator import RemediationValidator

logger = logging.getLogger(__name__)


class ExecutionStatus(Enum):
    """Overall remediation execution status."""
    SUCCESS = "success"
    FAILED = "failed"
    PARTIAL = "partial"  # Plan completed but some steps were skipped or failed optionally
    ROLLED_BACK = "rolled_back"
    PENDING_APPROVAL = "pending_approval"
    CANCELLED = "cancelled"


@dataclass
class RemediationResult:
    """Result of remediation execution."""

    execution_id: str
    status: ExecutionStatus
    started_at: datetime
    correlation_id: str = ""
    error_type: str = ""
    analysis: Optional[RemediationAnalysis] = None
    plan: Optional[RemediationPlan] = None
    execution: Optional[PlanExecutionResult] = None
    completed_at: Optional[datetime] = None
    total_duration_seconds: float = 0.0
    error_message: Optional[str] = None

    @property
    def plan_id(self) -> Optional[str]:
        return self.plan.plan_id if self.plan else None

    @property
    def strategy_names(self) -> List[str]:
        return list(self.plan.strategy_names) if self.plan else []

    @property
    def rollback_performed(self) -> bool:
        return bool(self.execution and self.execution.rolled_back)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "execution_id": self.execution_id,
            "status": self.status.value,
            "correlation_id": self.correlation_id,
            "error_type": self.error_type,
            "plan_id": self.plan_id,
            "strategy_names": self.strategy_names,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "total_duration_seconds": self.total_duration_seconds,
            "analysis": self.analysis.to_dict() if self.analysis else None,
            "plan": self.plan.to_dict() if self.plan else None,
            "execution": self.execution.to_dict() if self.execution else None,
            "rollback_performed": self.rollback_performed,
            "error_message": self.error_message,
        }


class RemediationEngine:
    """
    Automated remediation orchestration engine.

    Example:
        >>> engine = RemediationEngine(advisory_client=StaticAdvisoryClient({"Monitor": 0.8}))
        >>> engine.register_strategy(monitor_strategy)
        >>> result = await engine.remediate(context, auto_approve=True)
        >>> if result.status == ExecutionStatus.SUCCESS:
        ...     print("Remediation successful!")
    """

    def __init__(
        self,
        config: Optional[HealConfig] = None,
        registry: Optional[StrategyRegistry] = None,
        advisory_client: Optional[AdvisoryClient] = None,
        metrics_sink: Optional[RemediationMetricsSink] = None,
        history_limit: int = DEFAULT_EXECUTION_HISTORY_LIMIT,
    ):
        """
        Initialize remediation engine.

        Args:
            config: Engine configuration (defaults to HealConfig())
            registry: Strategy registry to draw from
            advisory_client: Advisory signal source (built from config if None)
            metrics_sink: Receives execution metrics
            history_limit: Maximum remediation results kept in history
        """
        self.config = config or HealConfig()
        self.registry = registry or StrategyRegistry()
        self.validator = RemediationValidator(strict=self.config.strict_validation)
        self.risk_assessor = RiskAssessor()
        self.analyzer = RemediationAnalyzer(
            self.registry,
            advisory_client or create_advisory_client(self.config),
            config=self.config,
        )
        self.plan_manager = PlanManager(
            self.registry, self.validator, self.risk_assessor, self.config
        )
        self.executor = RemediationExecutor(
            self.config, self.validator, metrics_sink=metrics_sink
        )
        self.history_limit = history_limit

        self.execution_history: List[RemediationResult] = []
        self.pending_approvals: Dict[str, Tuple[RemediationResult, ErrorContext]] = {}
        self._lock = threading.Lock()

        logger.info(
            f"Initialized RemediationEngine (rollback={self.config.enable_rollback}, "
            f"approval at {self.config.approval_risk_level})"
        )

    def register_strategy(self, strategy: RemediationStrategy) -> StrategyMetadata:
        """Register a strategy in the engine's registry."""
        return self.registry.register(strategy)

    async def remediate(self, context: ErrorContext, auto_approve: bool = False) -> RemediationResult:
        """
        Analyze an incident, build a plan and execute it.

        Args:
            context: Incident snapshot
            auto_approve: Approve the plan (and its gated steps) up front

        Returns:
            RemediationResult; PENDING_APPROVAL results can be passed to
            ``approve`` or ``reject`` by execution id
        """
        execution_id = self._generate_execution_id()
        started_at = datetime.now(timezone.utc)

        with LoggingContext(execution_id=execution_id, correlation_id=context.correlation_id,
                            error_type=context.error_type):
            logger.info(
                f"Starting remediation {execution_id} for {context.error_type} "
                f"on {context.source_component or 'unknown component'}"
            )

            analysis = await self.analyzer.analyze(context)
            if not analysis.is_valid:
                return self._failed_result(execution_id, context, started_at,
                                           analysis.error_message, analysis=analysis)

            try:
                plan = self.plan_manager.create_plan(analysis, context)
            except RegistryError as e:
                return self._failed_result(execution_id, context, started_at,
                                           f"Could not build plan: {e}", analysis=analysis)

            if auto_approve:
                self.plan_manager.approve_plan(plan.plan_id, approver="auto")
            self.plan_manager.hand_off(plan.plan_id)

            result = RemediationResult(
                execution_id=execution_id,
                status=ExecutionStatus.PENDING_APPROVAL,
                started_at=started_at,
                correlation_id=context.correlation_id,
                error_type=context.error_type,
                analysis=analysis,
                plan=plan,
            )
            return await self._execute(result, context)

    async def approve(self, execution_id: str, approver: Optional[str] = None) -> RemediationResult:
        """
        Approve and resume a pending remediation.

        Raises:
            ValueError: If nothing is pending under ``execution_id``
        """
        with self._lock:
            pending = self.pending_approvals.pop(execution_id, None)
        if pending is None:
            raise ValueError(f"No pending approval for {execution_id}")

        result, context = pending
        with LoggingContext(execution_id=execution_id, correlation_id=result.correlation_id):
            self.plan_manager.approve_plan(result.plan_id, approver=approver)
            logger.info(f"Executing approved remediation {execution_id}")
            return await self._execute(result, context)

    def reject(self, execution_id: str, reason: str = "Rejected by operator") -> RemediationResult:
        """
        Reject a pending remediation; its plan is cancelled.

        Raises:
            ValueError: If nothing is pending under ``execution_id``
        """
        with self._lock:
            pending = self.pending_approvals.pop(execution_id, None)
        if pending is None:
            raise ValueError(f"No pending approval for {execution_id}")

        result, _ = pending
        self.plan_manager.reject_plan(result.plan_id, reason)
        result.status = ExecutionStatus.CANCELLED
        result.error_message = reason
        self._finish(result)
        logger.info(f"Remediation {execution_id} rejected: {reason}")
        return result

    def get_pending_approvals(self) -> List[RemediationResult]:
        with self._lock:
            return [result for result, _ in self.pending_approvals.values()]

    async def _execute(self, result: RemediationResult, context: ErrorContext) -> RemediationResult:
        execution = await self.executor.execute(result.plan, context)
        result.execution = execution
        result.status = self._status_of(execution)

        if result.status == ExecutionStatus.PENDING_APPROVAL:
            with self._lock:
                self.pending_approvals[result.execution_id] = (result, context)
            logger.info(f"Remediation {result.execution_id} pending approval")
            return result

        if result.status not in (ExecutionStatus.SUCCESS, ExecutionStatus.PARTIAL):
            result.error_message = execution.error or execution.message
        self._finish(result)
        logger.info(
            f"Remediation {result.execution_id} completed with status: {result.status.value}"
        )
        return result

    @staticmethod
    def _status_of(execution: PlanExecutionResult) -> ExecutionStatus:
        if execution.validation is not None and not execution.validation.is_valid:
            return ExecutionStatus.FAILED
        if execution.status == RemediationStatus.WAITING_FOR_APPROVAL:
            return ExecutionStatus.PENDING_APPROVAL
        if execution.status == RemediationStatus.CANCELLED:
            return ExecutionStatus.CANCELLED
        if execution.status == RemediationStatus.COMPLETED:
            if execution.cancelled_steps or execution.failed_steps:
                return ExecutionStatus.PARTIAL
            return ExecutionStatus.SUCCESS
        rollback = execution.rollback
        if rollback is not None and rollback.is_complete and rollback.rolled_back_steps:
            return ExecutionStatus.ROLLED_BACK
        return ExecutionStatus.FAILED

    def _failed_result(self, execution_id: str, context: ErrorContext, started_at: datetime,
                       error_message: Optional[str],
                       analysis: Optional[RemediationAnalysis] = None) -> RemediationResult:
        """Create a failed remediation result."""
        result = RemediationResult(
            execution_id=execution_id,
            status=ExecutionStatus.FAILED,
            started_at=started_at,
            correlation_id=context.correlation_id,
            error_type=context.error_type,
            analysis=analysis,
            error_message=error_message,
        )
        self._finish(result)
        logger.error(f"Remediation {execution_id} failed: {error_message}")
        return result

    def _finish(self, result: RemediationResult) -> None:
        result.completed_at = datetime.now(timezone.utc)
        result.total_duration_seconds = (result.completed_at - result.started_at).total_seconds()
        with self._lock:
            self.execution_history.append(result)
            if len(self.execution_history) > self.history_limit:
                del self.execution_history[:-self.history_limit]

    def _generate_execution_id(self) -> str:
        """Generate unique execution ID."""
        return f"rem-{datetime.now().strftime('%Y%m%d%H%M%S')}-{uuid.uuid4().hex[:8]}"

    def get_execution_history(self, limit: Optional[int] = None) -> List[RemediationResult]:
        """
        Get remediation execution history.

        Args:
            limit: Maximum number of results (most recent first)

        Example:
            >>> history = engine.get_execution_history(limit=10)
            >>> for result in history:
            ...     print(f"{result.execution_id}: {result.status.value}")
        """
        with self._lock:
            history = sorted(self.execution_history, key=lambda r: r.started_at, reverse=True)

        if limit:
            history = history[:limit]

        return history

    def get_statistics(self) -> Dict[str, Any]:
        """
        Get remediation statistics.

        Example:
            >>> stats = engine.get_statistics()
            >>> print(f"Success rate: {stats['success_rate']:.1%}")
        """
        with self._lock:
            history = list(self.execution_history)
            pending = len(self.pending_approvals)

        if not history:
            return {
                "total_executions": 0,
                "success_rate": 0.0,
                "avg_duration_seconds": 0.0,
                "status_counts": {},
                "rollback_count": 0,
                "pending_approvals": pending,
            }

        total = len(history)
        successful = sum(1 for r in history if r.status == ExecutionStatus.SUCCESS)
        avg_duration = sum(r.total_duration_seconds for r in history) / total

        status_counts: Dict[str, int] = {}
        for result in history:
            status = result.status.value
            status_counts[status] = status_counts.get(status, 0) + 1

        return {
            "total_executions": total,
            "success_rate": successful / total,
            "avg_duration_seconds": avg_duration,
            "status_counts": status_counts,
            "rollback_count": sum(1 for r in history if r.rollback_performed),
            "pending_approvals": pending,
        }
