"""
Plan execution with retries, timeouts, approval gating and rollback.

Steps of one plan run sequentially in dependency order; separate plans run
concurrently (``execute_many``). Every attempt is written to the
ExecutionTracker and reported to the metrics sink. Action failures never
escape ``execute``: they end up in step and plan status, in the tracker,
and in the returned PlanExecutionResult.
"""
import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..config import HealConfig
from ..logging_context import LoggingContext
from ..metrics import (
    PrometheusRemediationMetrics,
    RemediationMetrics,
    RemediationMetricsSink,
    StepMetrics,
    emit_safely,
)
from ..models import ErrorContext
from ..security.sanitization import sanitize_for_logging
from .actions import ActionResult, ActionStatus
from .plan import (
    RemediationPlan,
    RemediationStatus,
    RemediationStep,
    StepRollbackStatus,
    can_transition,
)
from .tracker import ExecutionRecord, ExecutionTracker
from .validator import RemediationValidator, ValidationResult, execution_order

logger = logging.getLogger(__name__)

S = RemediationStatus


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class PlanExecutionResult:
    """What happened when a plan was executed (or why it was not)."""
    plan_id: str
    correlation_id: str
    status: RemediationStatus
    message: str
    error: Optional[str] = None
    validation: Optional[ValidationResult] = None
    completed_steps: List[str] = field(default_factory=list)
    failed_steps: List[str] = field(default_factory=list)
    cancelled_steps: List[str] = field(default_factory=list)
    failed_step: Optional[str] = None
    rollback: Optional[StepRollbackStatus] = None
    started_at: datetime = field(default_factory=_now)
    completed_at: Optional[datetime] = None
    duration_seconds: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.status == S.COMPLETED

    @property
    def rolled_back(self) -> bool:
        return self.rollback is not None

    @property
    def waiting_for_approval(self) -> bool:
        return self.status == S.WAITING_FOR_APPROVAL

    def to_dict(self) -> Dict[str, Any]:
        return {
            "plan_id": self.plan_id,
            "correlation_id": self.correlation_id,
            "status": self.status.value,
            "message": self.message,
            "error": self.error,
            "validation": self.validation.to_dict() if self.validation else None,
            "completed_steps": list(self.completed_steps),
            "failed_steps": list(self.failed_steps),
            "cancelled_steps": list(self.cancelled_steps),
            "failed_step": self.failed_step,
            "rollback": self.rollback.to_dict() if self.rollback else None,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_seconds": self.duration_seconds,
        }


class RemediationExecutor:
    """
    Runs remediation plans.

    Args:
        config: Rollback switch; plan defaults come from the plan itself
        validator: Gate applied to the plan and to every step before it runs
        tracker: Per-step execution records
        metrics_sink: Receives step and plan metrics; failures are logged only

    Example:
        >>> executor = RemediationExecutor()
        >>> result = await executor.execute(plan, context)
        >>> result.status
        <RemediationStatus.COMPLETED: 'completed'>
    """

    def __init__(self, config: Optional[HealConfig] = None,
                 validator: Optional[RemediationValidator] = None,
                 tracker: Optional[ExecutionTracker] = None,
                 metrics_sink: Optional[RemediationMetricsSink] = None):
        self.config = config or HealConfig()
        self.validator = validator or RemediationValidator(strict=self.config.strict_validation)
        self.tracker = tracker or ExecutionTracker()
        self.metrics_sink = metrics_sink if metrics_sink is not None else PrometheusRemediationMetrics()
        self._plans: Dict[str, RemediationPlan] = {}

    async def execute(self, plan: RemediationPlan, context: ErrorContext) -> PlanExecutionResult:
        """
        Validate and run ``plan``.

        A plan that needs approval stops at WaitingForApproval; call
        ``execute`` again after approving it to resume. Completed steps are
        not run twice.
        """
        with LoggingContext(plan_id=plan.plan_id, correlation_id=plan.correlation_id):
            started_at = _now()
            start = time.monotonic()
            self._plans[plan.plan_id] = plan

            validation = self.validator.validate_plan(plan, context)
            if not validation.is_valid:
                logger.error(f"Plan {plan.plan_id} not executed: {validation.summary()}")
                return self._result(plan, start, started_at, "Plan failed validation",
                                    error=validation.summary(), validation=validation)

            if plan.requires_approval and not plan.approved:
                if plan.status != S.WAITING_FOR_APPROVAL:
                    plan.transition_to(S.WAITING_FOR_APPROVAL, "Plan requires approval")
                logger.info(f"Plan {plan.plan_id} is waiting for approval")
                return self._result(plan, start, started_at, "Plan requires approval",
                                    validation=validation)

            resumed = plan.status == S.WAITING_FOR_APPROVAL
            plan.transition_to(S.IN_PROGRESS, "Resuming plan" if resumed else "Executing plan")
            logger.info(f"{'Resuming' if resumed else 'Executing'} plan {plan.plan_id} "
                        f"({len(plan.steps)} steps)")

            try:
                outcome, failed_step = await asyncio.wait_for(
                    self._run_steps(plan, context), timeout=plan.timeout_seconds
                )
            except asyncio.TimeoutError:
                outcome, failed_step = self._handle_plan_timeout(plan)

            rollback = None
            if outcome == S.WAITING_FOR_APPROVAL:
                return self._result(plan, start, started_at, plan.status_message or "",
                                    validation=validation)

            if outcome == S.COMPLETED:
                skipped = [s.step_id for s in plan.steps if s.status == S.CANCELLED]
                message = "All steps completed"
                if skipped:
                    message = f"Plan completed; skipped {', '.join(skipped)}"
                plan.transition_to(S.COMPLETED, message)
            elif outcome == S.CANCELLED:
                plan.transition_to(S.CANCELLED, "Plan cancelled before completion")
            else:
                rollback = await self._rollback(plan, context)
                plan.error = failed_step.error if failed_step else plan.error
                message = self._failure_message(plan, outcome, failed_step, rollback)
                plan.transition_to(outcome, message)
                logger.error(message)

            result = self._result(
                plan, start, started_at, plan.status_message or "",
                error=plan.error if plan.status.is_failure else None,
                validation=validation,
                failed_step=failed_step.step_id if failed_step else None,
                rollback=rollback,
            )
            self._emit_plan_metrics(plan, result)
            return result

    async def execute_many(self, plans: Sequence[Tuple[RemediationPlan, ErrorContext]]
                           ) -> List[PlanExecutionResult]:
        """Run several plans concurrently; results come back in input order."""
        return list(await asyncio.gather(
            *(self.execute(plan, context) for plan, context in plans)
        ))

    def cancel(self, plan_id: str, reason: str = "Cancelled") -> bool:
        """
        Cancel a plan this executor has seen.

        Running plans stop before their next step; the step in flight is
        not interrupted. Returns False for unknown or finished plans.
        """
        plan = self._plans.get(plan_id)
        if plan is None or plan.status.is_terminal:
            return False
        if plan.status in (S.IN_PROGRESS, S.RETRYING):
            plan.cancel_requested = True
            logger.info(f"Cancellation requested for plan {plan_id}: {reason}")
            return True

        for step in plan.steps:
            if step.status in (S.NOT_STARTED, S.WAITING_FOR_APPROVAL):
                step.transition_to(S.CANCELLED, reason)
                self.tracker.record_status(plan.plan_id, step.step_id, S.CANCELLED, reason)
        plan.transition_to(S.CANCELLED, reason)
        logger.info(f"Plan {plan_id} cancelled: {reason}")
        return True

    def get_action_status(self, plan_id: str, step_id: str) -> Optional[ExecutionRecord]:
        return self.tracker.get(plan_id, step_id)

    def get_all_executions(self) -> Dict[str, ExecutionRecord]:
        return self.tracker.get_all()

    def get_plan(self, plan_id: str) -> Optional[RemediationPlan]:
        return self._plans.get(plan_id)

    async def _run_steps(self, plan: RemediationPlan, context: ErrorContext
                         ) -> Tuple[RemediationStatus, Optional[RemediationStep]]:
        ordered = execution_order(plan.steps)

        for step in ordered:
            if step.status.is_terminal:
                continue

            if plan.cancel_requested:
                self._cancel_remaining(plan, ordered, "Plan cancelled")
                return S.CANCELLED, None

            unmet = [d for d in step.depends_on if plan.get_step(d).status != S.COMPLETED]
            if unmet:
                message = f"Skipped: dependencies not completed ({', '.join(unmet)})"
                step.transition_to(S.CANCELLED, message)
                self.tracker.record_status(plan.plan_id, step.step_id, S.CANCELLED, message)
                logger.info(f"Step {step.step_id} {message[0].lower()}{message[1:]}")
                continue

            if step.requires_approval and not step.approved:
                if step.status != S.WAITING_FOR_APPROVAL:
                    step.transition_to(S.WAITING_FOR_APPROVAL, "Step requires approval")
                plan.transition_to(S.WAITING_FOR_APPROVAL, f"Step {step.step_id} requires approval")
                logger.info(f"Plan {plan.plan_id} paused: step {step.step_id} requires approval")
                return S.WAITING_FOR_APPROVAL, None

            check = self.validator.validate_action(step, context, plan)
            if not check.is_valid:
                step.error = check.summary()
                step.transition_to(S.CANCELLED, f"Step failed validation: {step.error}")
                self.tracker.record_status(plan.plan_id, step.step_id, S.CANCELLED,
                                           step.status_message, error=step.error)
                if step.optional:
                    continue
                self._cancel_remaining(plan, ordered, f"Not run: step {step.step_id} failed validation")
                return S.FAILED, step

            if await self._run_step(plan, step, context):
                continue
            if step.optional:
                logger.warning(f"Optional step {step.step_id} failed; continuing")
                continue

            self._cancel_remaining(plan, ordered, f"Not run: step {step.step_id} failed")
            return S.FAILED, step

        return S.COMPLETED, None

    async def _run_step(self, plan: RemediationPlan, step: RemediationStep,
                        context: ErrorContext) -> bool:
        """Run one step with its retry policy. Returns True on success."""
        max_retries = plan.effective_max_retries(step)
        delay = plan.effective_retry_delay(step)
        timeout = plan.effective_timeout(step)

        step.started_at = _now()
        plan.execution_order.append(step.step_id)
        step.transition_to(S.IN_PROGRESS, f"Running {step.action.name}")

        while True:
            step.attempts += 1
            self.tracker.record_start(plan.plan_id, step.step_id, step.action.name)
            with LoggingContext(action_id=step.step_id):
                result, timed_out = await self._attempt(step, context, timeout)
            step.result = result

            if result.succeeded:
                step.error = None
                step.completed_at = _now()
                step.transition_to(S.COMPLETED, result.message)
                self.tracker.record_status(plan.plan_id, step.step_id, S.COMPLETED,
                                           result.message, result=result)
                logger.info(f"Step {step.step_id} completed: {result.message}")
                self._emit_step_metrics(plan, step)
                return True

            step.error = result.error or result.message
            if step.retry_count < max_retries:
                step.retry_count += 1
                message = (f"Attempt {step.attempts} failed: {step.error}; "
                           f"retry {step.retry_count}/{max_retries} in {delay}s")
                step.transition_to(S.RETRYING, message)
                self.tracker.record_status(plan.plan_id, step.step_id, S.RETRYING,
                                           message, error=step.error)
                logger.warning(f"Step {step.step_id}: {sanitize_for_logging(message)}")
                if delay > 0:
                    await asyncio.sleep(delay)
                step.transition_to(S.IN_PROGRESS, f"Retry {step.retry_count}/{max_retries}")
                continue

            final = S.TIMED_OUT if timed_out else S.FAILED
            message = f"{step.action.name} failed after {step.attempts} attempt(s): {step.error}"
            step.completed_at = _now()
            step.transition_to(final, message)
            self.tracker.record_status(plan.plan_id, step.step_id, final, message,
                                       error=step.error, result=result)
            logger.error(f"Step {step.step_id}: {sanitize_for_logging(message)}")
            self._emit_step_metrics(plan, step)
            return False

    async def _attempt(self, step: RemediationStep, context: ErrorContext,
                       timeout: float) -> Tuple[ActionResult, bool]:
        """One call of the step's action. Returns (result, timed_out)."""
        action = step.action
        start = time.monotonic()
        try:
            result = await asyncio.wait_for(action.run(context), timeout=timeout)
        except asyncio.TimeoutError:
            message = f"{action.name} timed out after {timeout}s"
            return ActionResult(status=ActionStatus.TIMEOUT, message=message, error=message,
                                duration_seconds=time.monotonic() - start), True
        except Exception as e:
            # Action code is host-supplied; any exception is a failed attempt
            logger.error(f"Action {action.name} raised {type(e).__name__}: "
                         f"{sanitize_for_logging(str(e))}")
            result = ActionResult.failure(f"{action.name} raised {type(e).__name__}", error=str(e))

        if not result.duration_seconds:
            result.duration_seconds = time.monotonic() - start
        return result, False

    async def _rollback(self, plan: RemediationPlan,
                        context: ErrorContext) -> Optional[StepRollbackStatus]:
        """Run the rollback plan once over the steps that were attempted."""
        rollback_plan = plan.rollback_plan
        if not self.config.enable_rollback or rollback_plan is None or not rollback_plan.is_available:
            return None

        steps = rollback_plan.steps_for(plan.execution_order)
        if not steps:
            logger.info(f"Plan {plan.plan_id} failed before any step with a rollback ran; nothing to undo")
            return None

        rollback_plan.triggered = True
        outcome = StepRollbackStatus(order=rollback_plan.order)
        rollback_plan.transition_to(S.IN_PROGRESS, f"Rolling back {len(steps)} step(s)")
        logger.warning(
            f"Rolling back plan {plan.plan_id} ({rollback_plan.order.value}): "
            f"{', '.join(s.rolls_back for s in steps)}"
        )

        for rollback_step in steps:
            target = plan.get_step(rollback_step.rolls_back)
            rollback_step.started_at = _now()
            rollback_step.attempts += 1
            rollback_step.transition_to(S.IN_PROGRESS, f"Undoing {target.step_id}")
            self.tracker.record_start(plan.plan_id, rollback_step.step_id,
                                      rollback_step.action.name, is_rollback=True)
            with LoggingContext(action_id=rollback_step.step_id):
                result, timed_out = await self._attempt(
                    rollback_step, context, plan.effective_timeout(rollback_step)
                )
            rollback_step.result = result
            rollback_step.completed_at = _now()

            if result.succeeded:
                rollback_step.transition_to(S.COMPLETED, result.message)
                if can_transition(target.status, S.ROLLED_BACK):
                    target.transition_to(S.ROLLED_BACK, f"Rolled back by {rollback_step.step_id}")
                    self.tracker.record_status(plan.plan_id, target.step_id, S.ROLLED_BACK,
                                               target.status_message)
                outcome.rolled_back_steps.append(target.step_id)
            else:
                rollback_step.error = result.error or result.message
                rollback_step.transition_to(S.TIMED_OUT if timed_out else S.FAILED,
                                            rollback_step.error)
                outcome.failed_actions.append(rollback_step.step_id)
                outcome.errors[rollback_step.step_id] = rollback_step.error
                logger.error(f"Rollback step {rollback_step.step_id} failed: "
                             f"{sanitize_for_logging(rollback_step.error)}")

            self.tracker.record_status(plan.plan_id, rollback_step.step_id, rollback_step.status,
                                       rollback_step.status_message, error=rollback_step.error,
                                       result=result)
            self._emit_step_metrics(plan, rollback_step)

        outcome.completed_at = _now()
        rollback_plan.outcome = outcome
        if outcome.is_complete:
            rollback_plan.transition_to(S.COMPLETED, f"Rolled back {len(outcome.rolled_back_steps)} step(s)")
        else:
            rollback_plan.transition_to(
                S.FAILED, f"{len(outcome.failed_actions)} rollback step(s) failed"
            )
        return outcome

    def _handle_plan_timeout(self, plan: RemediationPlan
                             ) -> Tuple[RemediationStatus, Optional[RemediationStep]]:
        message = f"Plan timed out after {plan.timeout_seconds}s"
        interrupted = None
        for step in plan.steps:
            if step.status == S.IN_PROGRESS:
                step.error = message
                step.completed_at = _now()
                step.transition_to(S.TIMED_OUT, message)
                interrupted = step
            elif step.status == S.RETRYING:
                step.completed_at = _now()
                step.transition_to(S.FAILED, message)
                interrupted = step
            else:
                continue
            self.tracker.record_status(plan.plan_id, step.step_id, step.status, message,
                                       error=step.error)

        self._cancel_remaining(plan, plan.steps, message)
        plan.error = message
        logger.error(f"Plan {plan.plan_id}: {message}")
        return S.TIMED_OUT, interrupted

    def _cancel_remaining(self, plan: RemediationPlan, steps: Sequence[RemediationStep],
                          reason: str) -> None:
        for step in steps:
            if step.status in (S.NOT_STARTED, S.WAITING_FOR_APPROVAL):
                step.transition_to(S.CANCELLED, reason)
                self.tracker.record_status(plan.plan_id, step.step_id, S.CANCELLED, reason)

    @staticmethod
    def _failure_message(plan: RemediationPlan, outcome: RemediationStatus,
                         failed_step: Optional[RemediationStep],
                         rollback: Optional[StepRollbackStatus]) -> str:
        if outcome == S.TIMED_OUT:
            message = f"Plan {plan.plan_id} timed out"
        elif failed_step is not None:
            message = f"Plan {plan.plan_id} failed at step {failed_step.step_id}"
        else:
            message = f"Plan {plan.plan_id} failed"
        if rollback is None:
            return f"{message}; no rollback performed"
        if rollback.is_complete:
            return f"{message}; rolled back {len(rollback.rolled_back_steps)} step(s)"
        return (f"{message}; rollback incomplete, failed: "
                f"{', '.join(rollback.failed_actions)}")

    def _result(self, plan: RemediationPlan, start: float, started_at: datetime,
                message: str, **kwargs: Any) -> PlanExecutionResult:
        return PlanExecutionResult(
            plan_id=plan.plan_id,
            correlation_id=plan.correlation_id,
            status=plan.status,
            message=message,
            completed_steps=[s.step_id for s in plan.steps if s.status == S.COMPLETED],
            failed_steps=[s.step_id for s in plan.steps if s.status.is_failure],
            cancelled_steps=[s.step_id for s in plan.steps if s.status == S.CANCELLED],
            started_at=started_at,
            completed_at=_now(),
            duration_seconds=time.monotonic() - start,
            **kwargs,
        )

    def _emit_step_metrics(self, plan: RemediationPlan, step: RemediationStep) -> None:
        duration = 0.0
        if step.started_at and step.completed_at:
            duration = (step.completed_at - step.started_at).total_seconds()
        emit_safely(self.metrics_sink, "record_step_metrics", StepMetrics(
            plan_id=plan.plan_id,
            step_id=step.step_id,
            step_type=step.step_type.value,
            status=step.status.value,
            attempts=step.attempts,
            duration_seconds=duration,
            error=step.error,
        ))

    def _emit_plan_metrics(self, plan: RemediationPlan, result: PlanExecutionResult) -> None:
        rollback = result.rollback
        emit_safely(self.metrics_sink, "record_remediation_metrics", RemediationMetrics(
            plan_id=plan.plan_id,
            correlation_id=plan.correlation_id,
            status=plan.status.value,
            steps_total=len(plan.steps),
            steps_completed=len(result.completed_steps),
            steps_failed=len(result.failed_steps),
            duration_seconds=result.duration_seconds,
            rolled_back=rollback is not None,
            rollback_failed_actions=len(rollback.failed_actions) if rollback else 0,
        ))
        emit_safely(self.metrics_sink, "record_metric", plan.plan_id,
                    "remediation_plan_steps_completed", float(len(result.completed_steps)))
