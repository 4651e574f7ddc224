"""
Remediation plan model and its state machine.

A plan is an ordered set of steps built from one or more strategies, plus
an optional rollback plan. Plans and steps share one status vocabulary and
one transition table; every status change goes through ``transition_to``,
so an illegal move (for example Completed back to InProgress) raises
instead of silently corrupting the audit trail.

Transitions:

    NotStarted          -> InProgress | WaitingForApproval | Cancelled
    WaitingForApproval  -> InProgress | Cancelled
    InProgress          -> Completed | Failed | TimedOut | Retrying
                           | WaitingForApproval | Cancelled
    Retrying            -> InProgress | Failed | Cancelled
    Completed           -> RolledBack
    Failed, TimedOut    -> RolledBack
    RolledBack          -> Completed
    Cancelled           (terminal)
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, FrozenSet, List, Optional

from ..exceptions import InvalidStateTransitionError
from .actions import ActionResult, RemediationAction

if TYPE_CHECKING:
    from .risk import RiskAssessment

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class StepType(str, Enum):
    """What a step is for."""
    VALIDATION = "validation"
    PREPARATION = "preparation"
    EXECUTION = "execution"
    VERIFICATION = "verification"
    CLEANUP = "cleanup"
    ROLLBACK = "rollback"
    NOTIFICATION = "notification"


class RemediationStatus(str, Enum):
    """Status of a plan, a step or a rollback plan."""
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    RETRYING = "retrying"
    WAITING_FOR_APPROVAL = "waiting_for_approval"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"
    ROLLED_BACK = "rolled_back"

    @property
    def is_failure(self) -> bool:
        """Failed and TimedOut are handled identically for rollback."""
        return self in (RemediationStatus.FAILED, RemediationStatus.TIMED_OUT)

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


S = RemediationStatus

TRANSITIONS: Dict[RemediationStatus, FrozenSet[RemediationStatus]] = {
    S.NOT_STARTED: frozenset({S.IN_PROGRESS, S.WAITING_FOR_APPROVAL, S.CANCELLED}),
    S.WAITING_FOR_APPROVAL: frozenset({S.IN_PROGRESS, S.CANCELLED}),
    S.IN_PROGRESS: frozenset({
        S.COMPLETED, S.FAILED, S.TIMED_OUT, S.RETRYING, S.WAITING_FOR_APPROVAL, S.CANCELLED,
    }),
    S.RETRYING: frozenset({S.IN_PROGRESS, S.FAILED, S.CANCELLED}),
    S.COMPLETED: frozenset({S.ROLLED_BACK}),
    S.FAILED: frozenset({S.ROLLED_BACK}),
    S.TIMED_OUT: frozenset({S.ROLLED_BACK}),
    S.ROLLED_BACK: frozenset({S.COMPLETED}),
    S.CANCELLED: frozenset(),
}

TERMINAL_STATUSES = frozenset({
    S.COMPLETED, S.FAILED, S.TIMED_OUT, S.CANCELLED, S.ROLLED_BACK,
})


def can_transition(current: RemediationStatus, requested: RemediationStatus) -> bool:
    return requested in TRANSITIONS[current]


class RollbackOrder(str, Enum):
    """Order in which rollback steps run relative to execution order."""
    FORWARD = "forward"
    REVERSE = "reverse"


@dataclass(frozen=True)
class StatusChange:
    """One entry of a status history."""
    status: RemediationStatus
    at: datetime
    message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"status": self.status.value, "at": self.at.isoformat(), "message": self.message}


class StatefulMixin:
    """
    Status bookkeeping shared by steps, plans and rollback plans.

    Expects ``status``, ``status_message``, ``updated_at`` and ``history``
    attributes on the host dataclass.
    """

    status: RemediationStatus
    status_message: Optional[str]
    updated_at: datetime
    history: List[StatusChange]

    @property
    def label(self) -> str:
        raise NotImplementedError

    def transition_to(self, new_status: RemediationStatus, message: Optional[str] = None) -> None:
        """
        Move to ``new_status``.

        Raises:
            InvalidStateTransitionError: If the state machine forbids the move
        """
        if not can_transition(self.status, new_status):
            raise InvalidStateTransitionError(self.label, self.status, new_status)

        logger.debug(f"{self.label}: {self.status.value} -> {new_status.value}")
        self.status = new_status
        self.status_message = message
        self.updated_at = _now()
        self.history.append(StatusChange(new_status, self.updated_at, message))


@dataclass
class RemediationStep(StatefulMixin):
    """
    One unit of remediation work.

    ``max_retries``, ``retry_delay_seconds`` and ``timeout_seconds`` left as
    None inherit the plan's values.
    """
    step_id: str
    name: str
    action: Optional[RemediationAction]
    step_type: StepType = StepType.EXECUTION
    rollback_action: Optional[RemediationAction] = None
    order: int = 0
    depends_on: List[str] = field(default_factory=list)
    optional: bool = False
    requires_approval: bool = False
    approved: bool = False
    max_retries: Optional[int] = None
    retry_delay_seconds: Optional[float] = None
    timeout_seconds: Optional[float] = None
    strategy_name: Optional[str] = None
    rollback_step_id: Optional[str] = None
    rolls_back: Optional[str] = None
    parameters: Dict[str, Any] = field(default_factory=dict)
    description: Optional[str] = None

    status: RemediationStatus = RemediationStatus.NOT_STARTED
    status_message: Optional[str] = None
    error: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    attempts: int = 0
    retry_count: int = 0
    result: Optional[ActionResult] = None
    risk_assessment: Optional["RiskAssessment"] = None
    updated_at: datetime = field(default_factory=_now)
    history: List[StatusChange] = field(default_factory=list)

    @property
    def label(self) -> str:
        return f"step {self.step_id}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "step_id": self.step_id,
            "name": self.name,
            "action": self.action.name if self.action else None,
            "step_type": self.step_type.value,
            "order": self.order,
            "depends_on": list(self.depends_on),
            "optional": self.optional,
            "requires_approval": self.requires_approval,
            "approved": self.approved,
            "strategy_name": self.strategy_name,
            "rollback_step_id": self.rollback_step_id,
            "rolls_back": self.rolls_back,
            "status": self.status.value,
            "status_message": self.status_message,
            "error": self.error,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "attempts": self.attempts,
            "retry_count": self.retry_count,
            "result": self.result.to_dict() if self.result else None,
            "risk_assessment": self.risk_assessment.to_dict() if self.risk_assessment else None,
        }


@dataclass
class StepRollbackStatus:
    """
    Outcome of a rollback run.

    ``failed_actions`` lists rollback steps that themselves failed; a
    non-empty list never turns the plan's failure into a success.
    """
    order: RollbackOrder
    rolled_back_steps: List[str] = field(default_factory=list)
    failed_actions: List[str] = field(default_factory=list)
    errors: Dict[str, str] = field(default_factory=dict)
    started_at: datetime = field(default_factory=_now)
    completed_at: Optional[datetime] = None

    @property
    def is_complete(self) -> bool:
        return not self.failed_actions

    def to_dict(self) -> Dict[str, Any]:
        return {
            "order": self.order.value,
            "rolled_back_steps": list(self.rolled_back_steps),
            "failed_actions": list(self.failed_actions),
            "errors": dict(self.errors),
            "is_complete": self.is_complete,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


@dataclass
class RollbackPlan(StatefulMixin):
    """
    Rollback steps paired with the plan's forward steps.

    Each rollback step names the forward step it undoes in ``rolls_back``.
    A rollback plan runs at most once.
    """
    plan_id: str
    steps: List[RemediationStep] = field(default_factory=list)
    order: RollbackOrder = RollbackOrder.REVERSE
    triggered: bool = False
    outcome: Optional[StepRollbackStatus] = None

    status: RemediationStatus = RemediationStatus.NOT_STARTED
    status_message: Optional[str] = None
    updated_at: datetime = field(default_factory=_now)
    history: List[StatusChange] = field(default_factory=list)

    @property
    def label(self) -> str:
        return f"rollback plan {self.plan_id}"

    @property
    def is_available(self) -> bool:
        return bool(self.steps) and not self.triggered

    def steps_for(self, executed_step_ids: List[str]) -> List[RemediationStep]:
        """
        Rollback steps for the forward steps that ran, in rollback order.

        Forward steps without a rollback counterpart are skipped.
        """
        by_target = {step.rolls_back: step for step in self.steps}
        ordered = [by_target[sid] for sid in executed_step_ids if sid in by_target]
        if self.order == RollbackOrder.REVERSE:
            ordered.reverse()
        return ordered

    def to_dict(self) -> Dict[str, Any]:
        return {
            "order": self.order.value,
            "status": self.status.value,
            "triggered": self.triggered,
            "is_available": self.is_available,
            "steps": [s.to_dict() for s in self.steps],
            "outcome": self.outcome.to_dict() if self.outcome else None,
        }


@dataclass
class RemediationPlan(StatefulMixin):
    """
    Executable remediation plan.

    Owned by the PlanManager until handed off, then by the executor
    (``owner`` records which). ``execution_order`` lists step ids in the
    order they actually started.
    """
    plan_id: str
    correlation_id: str
    error_type: str
    steps: List[RemediationStep] = field(default_factory=list)
    rollback_plan: Optional[RollbackPlan] = None
    strategy_names: List[str] = field(default_factory=list)
    risk_assessment: Optional["RiskAssessment"] = None
    requires_approval: bool = False
    approved: bool = False
    timeout_seconds: float = 3600
    max_retries: int = 3
    retry_delay_seconds: float = 5.0
    action_timeout_seconds: float = 300
    owner: str = "plan_manager"
    cancel_requested: bool = False
    execution_order: List[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=_now)

    status: RemediationStatus = RemediationStatus.NOT_STARTED
    status_message: Optional[str] = None
    error: Optional[str] = None
    updated_at: datetime = field(default_factory=_now)
    history: List[StatusChange] = field(default_factory=list)

    @property
    def label(self) -> str:
        return f"plan {self.plan_id}"

    def get_step(self, step_id: str) -> Optional[RemediationStep]:
        for step in self.steps:
            if step.step_id == step_id:
                return step
        return None

    def effective_max_retries(self, step: RemediationStep) -> int:
        return self.max_retries if step.max_retries is None else step.max_retries

    def effective_retry_delay(self, step: RemediationStep) -> float:
        if step.retry_delay_seconds is None:
            return self.retry_delay_seconds
        return step.retry_delay_seconds

    def effective_timeout(self, step: RemediationStep) -> float:
        if step.timeout_seconds is None:
            return self.action_timeout_seconds
        return step.timeout_seconds

    def to_dict(self) -> Dict[str, Any]:
        return {
            "plan_id": self.plan_id,
            "correlation_id": self.correlation_id,
            "error_type": self.error_type,
            "strategy_names": list(self.strategy_names),
            "status": self.status.value,
            "status_message": self.status_message,
            "error": self.error,
            "requires_approval": self.requires_approval,
            "approved": self.approved,
            "owner": self.owner,
            "timeout_seconds": self.timeout_seconds,
            "max_retries": self.max_retries,
            "retry_delay_seconds": self.retry_delay_seconds,
            "action_timeout_seconds": self.action_timeout_seconds,
            "execution_order": list(self.execution_order),
            "steps": [s.to_dict() for s in self.steps],
            "rollback_plan": self.rollback_plan.to_dict() if self.rollback_plan else None,
            "risk_assessment": self.risk_assessment.to_dict() if self.risk_assessment else None,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "history": [h.to_dict() for h in self.history],
        }
