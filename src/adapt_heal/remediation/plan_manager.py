"""
Plan construction and plan lifecycle.

PlanManager turns ranked recommendations into a RemediationPlan with a
paired RollbackPlan, scores its risk, decides whether it needs approval,
and keeps every plan it built so approvals, rejections and cancellations
can find it later. A plan belongs to the manager until ``hand_off`` gives
it to the executor.
"""
import logging
import threading
import uuid
from typing import Dict, List, Optional, Sequence, Union

from ..config import HealConfig
from ..exceptions import InvalidStateTransitionError, PlanNotFoundError, PlanOwnershipError
from ..models import ErrorContext, RiskLevel
from .actions import UndoAction
from .analyzer import RemediationAnalysis, StrategyRecommendation
from .plan import (
    RemediationPlan,
    RemediationStatus,
    RemediationStep,
    RollbackOrder,
    RollbackPlan,
    StepType,
    can_transition,
)
from .registry import StrategyRegistry
from .risk import RiskAssessor
from .strategies import RemediationStrategy
from .validator import RemediationValidator, ValidationResult

logger = logging.getLogger(__name__)

PLAN_MANAGER_OWNER = "plan_manager"
EXECUTOR_OWNER = "executor"


def generate_plan_id() -> str:
    return f"plan-{uuid.uuid4().hex[:12]}"


def _sink_steps(steps: Sequence[RemediationStep]) -> List[str]:
    """Ids of steps no other step depends on."""
    depended_on = {d for step in steps for d in step.depends_on}
    return [step.step_id for step in steps if step.step_id not in depended_on]


class PlanManager:
    """
    Builds and tracks remediation plans.

    Args:
        registry: Source of the strategies named by recommendations
        validator: Plan validator (defaults to one honouring strict_validation)
        risk_assessor: Risk scoring for plans and steps
        config: Plan limits, rollback order and the approval threshold
    """

    def __init__(self, registry: StrategyRegistry,
                 validator: Optional[RemediationValidator] = None,
                 risk_assessor: Optional[RiskAssessor] = None,
                 config: Optional[HealConfig] = None):
        self.registry = registry
        self.config = config or HealConfig()
        self.validator = validator or RemediationValidator(strict=self.config.strict_validation)
        self.risk_assessor = risk_assessor or RiskAssessor()
        self._plans: Dict[str, RemediationPlan] = {}
        self._lock = threading.RLock()

    def create_plan(self, recommendations: Union[RemediationAnalysis, Sequence[StrategyRecommendation]],
                    context: ErrorContext) -> RemediationPlan:
        """
        Build a plan from the top recommendation(s).

        Up to ``max_strategies_per_plan`` strategies are chained: the first
        steps of each strategy depend on the last steps of the one before.

        Raises:
            ValueError: If the analysis is invalid or has no recommendations
            StrategyNotFoundError: If a recommended strategy is not registered
        """
        if isinstance(recommendations, RemediationAnalysis):
            if not recommendations.is_valid:
                raise ValueError(
                    f"Cannot build a plan from an invalid analysis: {recommendations.error_message}"
                )
            recommendations = recommendations.recommendations
        if not recommendations:
            raise ValueError("At least one recommendation is required to build a plan")

        chosen = list(recommendations)[:max(1, self.config.max_strategies_per_plan)]
        strategies = [self.registry.get_strategy(r.strategy_name, r.version) for r in chosen]

        plan = RemediationPlan(
            plan_id=generate_plan_id(),
            correlation_id=context.correlation_id,
            error_type=context.error_type,
            strategy_names=[s.name for s in strategies],
            timeout_seconds=self.config.plan_timeout_seconds,
            max_retries=self.config.max_retries,
            retry_delay_seconds=self.config.retry_delay_seconds,
            action_timeout_seconds=self.config.action_timeout_seconds,
        )
        plan.steps = self._build_steps(strategies, context)
        plan.rollback_plan = self.build_rollback_plan(
            plan, RollbackOrder(self.config.rollback_order)
        )

        plan.risk_assessment = self.risk_assessor.assess_plan(
            plan, context, scopes=[s.impact_scope for s in strategies]
        )
        threshold = RiskLevel.parse(self.config.approval_risk_level)
        gated_by = [s.name for s in strategies if s.requires_approval]
        if plan.risk_assessment.risk_level >= threshold:
            plan.requires_approval = True
            logger.info(
                f"Plan {plan.plan_id} needs approval: risk "
                f"{plan.risk_assessment.risk_level.label} >= {threshold.label}"
            )
        elif gated_by:
            plan.requires_approval = True
            logger.info(f"Plan {plan.plan_id} needs approval: required by {', '.join(gated_by)}")

        with self._lock:
            self._plans[plan.plan_id] = plan

        logger.info(
            f"Created plan {plan.plan_id} for {context.correlation_id} from "
            f"{', '.join(plan.strategy_names)} with {len(plan.steps)} step(s)"
        )
        return plan

    def _build_steps(self, strategies: Sequence[RemediationStrategy],
                     context: ErrorContext) -> List[RemediationStep]:
        steps: List[RemediationStep] = []
        previous_sinks: List[str] = []
        order_offset = 0

        for strategy in strategies:
            built = strategy.build_steps(context)
            if not built:
                logger.warning(f"Strategy {strategy.name} produced no steps for this context")
                continue

            for step in built:
                if not step.depends_on and previous_sinks:
                    step.depends_on = list(previous_sinks)
                step.order += order_offset
                if step.strategy_name is None:
                    step.strategy_name = strategy.name
                step.risk_assessment = self.risk_assessor.assess_step(
                    step, context, strategy.impact_scope
                )

            order_offset = max(step.order for step in built) + 1
            previous_sinks = _sink_steps(built)
            steps.extend(built)
        return steps

    def build_rollback_plan(self, plan: RemediationPlan,
                            order: RollbackOrder = RollbackOrder.REVERSE) -> RollbackPlan:
        """
        Pair every step that can be undone with a rollback step.

        A step's explicit ``rollback_action`` wins; otherwise an action that
        implements its own rollback is undone through UndoAction.
        """
        rollback_steps = []
        for step in plan.steps:
            action = step.rollback_action
            if action is None and step.action is not None and step.action.supports_rollback:
                action = UndoAction(step.action)
            if action is None:
                continue

            rollback_step = RemediationStep(
                step_id=f"{step.step_id}:rollback",
                name=f"Rollback {step.name}",
                action=action,
                step_type=StepType.ROLLBACK,
                order=step.order,
                max_retries=0,
                timeout_seconds=step.timeout_seconds,
                strategy_name=step.strategy_name,
                rolls_back=step.step_id,
            )
            step.rollback_step_id = rollback_step.step_id
            rollback_steps.append(rollback_step)

        return RollbackPlan(plan_id=plan.plan_id, steps=rollback_steps, order=order)

    def validate_plan(self, plan: Union[str, RemediationPlan],
                      context: Optional[ErrorContext] = None) -> ValidationResult:
        if isinstance(plan, str):
            plan = self.get_plan(plan)
        return self.validator.validate_plan(plan, context)

    def get_plan(self, plan_id: str) -> RemediationPlan:
        """
        Raises:
            PlanNotFoundError: If no plan has this id
        """
        with self._lock:
            plan = self._plans.get(plan_id)
        if plan is None:
            raise PlanNotFoundError(f"Plan not found: {plan_id}")
        return plan

    def list_plans(self, status: Optional[RemediationStatus] = None) -> List[RemediationPlan]:
        with self._lock:
            plans = list(self._plans.values())
        if status is not None:
            plans = [p for p in plans if p.status == status]
        return sorted(plans, key=lambda p: p.created_at)

    def remove_plan(self, plan_id: str) -> bool:
        with self._lock:
            return self._plans.pop(plan_id, None) is not None

    def hand_off(self, plan_id: str, owner: str = EXECUTOR_OWNER) -> RemediationPlan:
        """
        Transfer a plan to its executor.

        Raises:
            PlanOwnershipError: If the plan was already handed off
        """
        plan = self.get_plan(plan_id)
        with self._lock:
            if plan.owner != PLAN_MANAGER_OWNER:
                raise PlanOwnershipError(f"Plan {plan_id} is already owned by {plan.owner}")
            plan.owner = owner
        logger.debug(f"Plan {plan_id} handed off to {owner}")
        return plan

    def approve_plan(self, plan_id: str, approver: Optional[str] = None) -> RemediationPlan:
        """
        Approve a plan; a plan waiting for approval can then be resumed.

        Steps that individually need approval are approved as well.
        """
        plan = self.get_plan(plan_id)
        if plan.status.is_terminal:
            raise ValueError(f"Plan {plan_id} is already {plan.status.value}")
        plan.approved = True
        for step in plan.steps:
            if step.requires_approval:
                step.approved = True
        logger.info(f"Plan {plan_id} approved" + (f" by {approver}" if approver else ""))
        return plan

    def approve_step(self, plan_id: str, step_id: str) -> RemediationStep:
        plan = self.get_plan(plan_id)
        step = plan.get_step(step_id)
        if step is None:
            raise PlanNotFoundError(f"Step {step_id} not found in plan {plan_id}")
        step.approved = True
        logger.info(f"Step {step_id} of plan {plan_id} approved")
        return step

    def reject_plan(self, plan_id: str, reason: str = "Rejected") -> RemediationPlan:
        """
        Reject a plan that has not started or is waiting for approval.

        Raises:
            InvalidStateTransitionError: If the plan is past the approval gate
        """
        plan = self.get_plan(plan_id)
        if plan.status not in (RemediationStatus.NOT_STARTED,
                               RemediationStatus.WAITING_FOR_APPROVAL):
            raise InvalidStateTransitionError(plan.label, plan.status, RemediationStatus.CANCELLED)
        self._cancel_pending_steps(plan, f"Plan rejected: {reason}")
        plan.transition_to(RemediationStatus.CANCELLED, f"Plan rejected: {reason}")
        logger.info(f"Plan {plan_id} rejected: {reason}")
        return plan

    def cancel_plan(self, plan_id: str, reason: str = "Cancelled") -> RemediationPlan:
        """
        Cancel a plan.

        A plan that has not started, or waits for approval, is cancelled
        immediately. A running plan is flagged; the executor stops before
        its next step. The step in flight is never interrupted.

        Raises:
            InvalidStateTransitionError: If the plan already finished
        """
        plan = self.get_plan(plan_id)
        if plan.status in (RemediationStatus.IN_PROGRESS, RemediationStatus.RETRYING):
            plan.cancel_requested = True
            logger.info(f"Cancellation requested for running plan {plan_id}: {reason}")
            return plan

        self._require_cancellable(plan)
        self._cancel_pending_steps(plan, reason)
        plan.transition_to(RemediationStatus.CANCELLED, reason)
        logger.info(f"Plan {plan_id} cancelled: {reason}")
        return plan

    @staticmethod
    def _require_cancellable(plan: RemediationPlan) -> None:
        if not can_transition(plan.status, RemediationStatus.CANCELLED):
            raise InvalidStateTransitionError(plan.label, plan.status, RemediationStatus.CANCELLED)

    @staticmethod
    def _cancel_pending_steps(plan: RemediationPlan, reason: str) -> None:
        for step in plan.steps:
            if step.status in (RemediationStatus.NOT_STARTED, RemediationStatus.WAITING_FOR_APPROVAL):
                step.transition_to(RemediationStatus.CANCELLED, reason)
