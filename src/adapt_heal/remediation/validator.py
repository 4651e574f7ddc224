"""
Validation gate for contexts, strategies, plans and individual actions.

Nothing here raises for invalid input: every check lands in a
ValidationResult as an itemized error or warning with a stable code, so
callers can branch on the outcome and show the reasons.
"""
import heapq
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Type

from ..models import ErrorContext
from .actions import FunctionAction, LogAction, RemediationAction, UndoAction, WebhookAction
from .plan import RemediationPlan, RemediationStatus, RemediationStep, StepType
from .registry import is_semantic_version
from .strategies import RemediationStrategy, RunbookStrategy, is_valid_priority

logger = logging.getLogger(__name__)

DEFAULT_ALLOWED_ACTION_TYPES: Tuple[Type[RemediationAction], ...] = (
    FunctionAction, LogAction, WebhookAction, UndoAction,
)

EXECUTABLE_PLAN_STATES = frozenset({
    RemediationStatus.NOT_STARTED, RemediationStatus.WAITING_FOR_APPROVAL,
})


class IssueSeverity(str, Enum):
    ERROR = "error"
    WARNING = "warning"


@dataclass(frozen=True)
class ValidationIssue:
    """One validation finding."""
    code: str
    message: str
    severity: IssueSeverity = IssueSeverity.ERROR
    step_id: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "severity": self.severity.value,
            "step_id": self.step_id,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class ValidationResult:
    """Itemized outcome of a validation; valid when there are no errors."""
    errors: List[ValidationIssue] = field(default_factory=list)
    warnings: List[ValidationIssue] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def add_error(self, code: str, message: str, step_id: Optional[str] = None) -> None:
        self.errors.append(ValidationIssue(code, message, IssueSeverity.ERROR, step_id))

    def add_warning(self, code: str, message: str, step_id: Optional[str] = None) -> None:
        self.warnings.append(ValidationIssue(code, message, IssueSeverity.WARNING, step_id))

    def merge(self, other: "ValidationResult") -> "ValidationResult":
        self.errors.extend(other.errors)
        self.warnings.extend(other.warnings)
        return self

    def has_error(self, code: str) -> bool:
        return any(issue.code == code for issue in self.errors)

    @property
    def error_messages(self) -> List[str]:
        return [issue.message for issue in self.errors]

    def summary(self) -> str:
        return "; ".join(self.error_messages)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_valid": self.is_valid,
            "errors": [e.to_dict() for e in self.errors],
            "warnings": [w.to_dict() for w in self.warnings],
        }


def find_cycle(steps: Sequence[RemediationStep]) -> Optional[List[str]]:
    """
    Return one dependency cycle as a closed path (a -> b -> a), or None.

    Dependencies on unknown step ids are ignored here.
    """
    graph = {step.step_id: [d for d in step.depends_on] for step in steps}
    white, grey, black = 0, 1, 2
    colour = {node: white for node in graph}

    for root in graph:
        if colour[root] != white:
            continue
        stack: List[Tuple[str, int]] = [(root, 0)]
        path: List[str] = [root]
        colour[root] = grey
        while stack:
            node, index = stack[-1]
            edges = graph[node]
            if index < len(edges):
                stack[-1] = (node, index + 1)
                nxt = edges[index]
                if nxt not in colour:
                    continue
                if colour[nxt] == grey:
                    return path[path.index(nxt):] + [nxt]
                if colour[nxt] == white:
                    colour[nxt] = grey
                    stack.append((nxt, 0))
                    path.append(nxt)
            else:
                colour[node] = black
                stack.pop()
                path.pop()
    return None


def execution_order(steps: Sequence[RemediationStep]) -> List[RemediationStep]:
    """
    Topological order of ``steps``; among ready steps the lowest ``order``
    runs first, then declaration position.

    Raises:
        ValueError: On a dependency cycle or an unknown dependency. Plans
            are validated before this is called, so either is a bug.
    """
    by_id = {step.step_id: step for step in steps}
    position = {step.step_id: i for i, step in enumerate(steps)}
    remaining = {step.step_id: 0 for step in steps}
    dependents: Dict[str, List[str]] = {step.step_id: [] for step in steps}

    for step in steps:
        for dependency in step.depends_on:
            if dependency not in by_id:
                raise ValueError(f"Step {step.step_id} depends on unknown step {dependency}")
            remaining[step.step_id] += 1
            dependents[dependency].append(step.step_id)

    ready = [(by_id[sid].order, position[sid], sid) for sid, count in remaining.items() if count == 0]
    heapq.heapify(ready)

    ordered: List[RemediationStep] = []
    while ready:
        _, _, sid = heapq.heappop(ready)
        ordered.append(by_id[sid])
        for dependent in dependents[sid]:
            remaining[dependent] -= 1
            if remaining[dependent] == 0:
                heapq.heappush(ready, (by_id[dependent].order, position[dependent], dependent))

    if len(ordered) != len(steps):
        raise ValueError("Dependency cycle among plan steps")
    return ordered


class RemediationValidator:
    """
    Validates contexts, strategies, plans and actions.

    Args:
        strict: Also reject action types outside ``allowed_action_types``
            and warn about parameters an action or strategy does not accept.
        allowed_action_types: Action classes accepted in strict mode.
    """

    def __init__(self, strict: bool = False,
                 allowed_action_types: Iterable[Type[RemediationAction]] = DEFAULT_ALLOWED_ACTION_TYPES):
        self.strict = strict
        self.allowed_action_types = tuple(allowed_action_types)

    def validate_context(self, context: Optional[ErrorContext]) -> ValidationResult:
        result = ValidationResult()
        if context is None:
            result.add_error("MissingContext", "Error context is required")
            return result

        if not context.error_type.strip():
            result.add_error("MissingErrorType", "Error context has no error type")
        if not context.source_component:
            result.add_warning("MissingErrorSource", "Error context has no source component")
        if not context.has_graph():
            result.add_warning("NoComponentGraph", "Error context has no component graph")
        elif context.source_component and context.source_component not in context.components():
            result.add_warning(
                "UnknownErrorSource",
                f"Source component {context.source_component} is not in the component graph",
            )
        return result

    def validate_strategy(self, strategy: Optional[RemediationStrategy],
                          context: Optional[ErrorContext] = None) -> ValidationResult:
        result = ValidationResult()
        if strategy is None:
            result.add_error("MissingStrategy", "Strategy is required")
            return result

        if not strategy.name:
            result.add_error("MissingName", "Strategy name is required")
        if not strategy.description:
            result.add_error("MissingDescription", f"Strategy {strategy.name} has no description")
        if not is_valid_priority(strategy.priority):
            result.add_error("InvalidPriority", "Strategy priority must be between 1 and 5")
        if not is_semantic_version(strategy.version):
            result.add_error(
                "InvalidVersion",
                f"Strategy version '{strategy.version}' is not a semantic version",
            )
        if not strategy.supported_error_types:
            result.add_warning("NoErrorTypes", f"Strategy {strategy.name} supports no error types")

        if self.strict:
            if not strategy.parameters and strategy.accepted_parameters:
                result.add_warning("NoParameters", f"Strategy {strategy.name} has no parameters")
            for missing in sorted(strategy.accepted_parameters - set(strategy.parameters)):
                result.add_warning(
                    "MissingParameter", f"Strategy {strategy.name} is missing parameter '{missing}'"
                )
            for unknown in sorted(set(strategy.parameters) - strategy.accepted_parameters):
                result.add_warning(
                    "UnknownParameter", f"Strategy {strategy.name} has unknown parameter '{unknown}'"
                )

        if isinstance(strategy, RunbookStrategy):
            names = [d.name for d in strategy.steps]
            if not names:
                result.add_warning("NoSteps", f"Strategy {strategy.name} defines no steps")
            for name in sorted({n for n in names if names.count(n) > 1}):
                result.add_error("DuplicateStepId", f"Strategy {strategy.name} repeats step '{name}'")

        if context is not None and context.error_type and \
                not strategy.supports_error_type(context.error_type):
            result.add_warning(
                "UnsupportedErrorType",
                f"Strategy {strategy.name} does not handle error type '{context.error_type}'",
            )
        return result

    def validate_plan(self, plan: Optional[RemediationPlan],
                      context: Optional[ErrorContext] = None) -> ValidationResult:
        """
        Structural checks before execution: at least one step, unique ids,
        every dependency resolving inside the plan, no cycles, sane limits,
        and a consistent rollback plan.
        """
        result = ValidationResult()
        if plan is None:
            result.add_error("MissingPlan", "Plan is required")
            return result

        if not plan.plan_id:
            result.add_error("MissingPlanId", "Plan id is required")
        if plan.status not in EXECUTABLE_PLAN_STATES:
            result.add_error(
                "InvalidPlanState",
                f"Plan {plan.plan_id} cannot start from status {plan.status.value}",
            )
        if plan.timeout_seconds <= 0:
            result.add_error("InvalidTimeout", f"Plan timeout must be positive, got {plan.timeout_seconds}")
        if plan.max_retries < 0:
            result.add_error("InvalidRetryCount", f"Plan max retries cannot be negative, got {plan.max_retries}")

        if not plan.steps:
            result.add_error("NoSteps", "Plan must contain at least one step")

        seen = set()
        for step in plan.steps:
            if step.step_id in seen:
                result.add_error("DuplicateStepId", f"Duplicate step id {step.step_id}", step.step_id)
            seen.add(step.step_id)
            result.merge(self._check_step(step, forward=True))

        for step in plan.steps:
            for dependency in step.depends_on:
                if dependency not in seen:
                    result.add_error(
                        "UnknownDependency",
                        f"Step {step.step_id} depends on unknown step {dependency}",
                        step.step_id,
                    )

        cycle = find_cycle(plan.steps)
        if cycle:
            result.add_error("DependencyCycle", f"Dependency cycle detected: {' -> '.join(cycle)}")

        if plan.rollback_plan is not None:
            for step in plan.rollback_plan.steps:
                result.merge(self._check_step(step, forward=False))
                if step.rolls_back not in seen:
                    result.add_error(
                        "UnknownRollbackTarget",
                        f"Rollback step {step.step_id} targets unknown step {step.rolls_back}",
                        step.step_id,
                    )

        if context is not None:
            result.merge(self.validate_context(context))

        if not result.is_valid:
            logger.info(f"Plan {plan.plan_id} failed validation: {result.summary()}")
        return result

    def validate_action(self, step: Optional[RemediationStep],
                        context: Optional[ErrorContext] = None,
                        plan: Optional[RemediationPlan] = None) -> ValidationResult:
        """
        Checks before a step's action may run: configuration, state,
        approval, and (with ``plan``) that every dependency has completed.
        """
        result = ValidationResult()
        if step is None:
            result.add_error("MissingStep", "Step is required")
            return result

        result.merge(self._check_step(step, forward=step.step_type != StepType.ROLLBACK))

        if step.status not in (RemediationStatus.NOT_STARTED, RemediationStatus.WAITING_FOR_APPROVAL):
            result.add_error(
                "InvalidState",
                f"Step {step.step_id} cannot start from status {step.status.value}",
                step.step_id,
            )
        if step.requires_approval and not step.approved:
            result.add_error("ApprovalRequired", f"Step {step.step_id} requires approval", step.step_id)

        if plan is not None:
            for dependency in step.depends_on:
                other = plan.get_step(dependency)
                if other is None:
                    result.add_error(
                        "UnknownDependency",
                        f"Step {step.step_id} depends on unknown step {dependency}",
                        step.step_id,
                    )
                elif other.status != RemediationStatus.COMPLETED:
                    result.add_error(
                        "DependencyNotCompleted",
                        f"Step {step.step_id} depends on {dependency}, which is {other.status.value}",
                        step.step_id,
                    )

        if context is not None and not context.error_type:
            result.add_error("MissingErrorType", "Error context has no error type", step.step_id)
        return result

    def _check_step(self, step: RemediationStep, forward: bool) -> ValidationResult:
        result = ValidationResult()
        sid = step.step_id

        if not sid or not sid.strip():
            result.add_error("InvalidStepId", "Step id is required")
        if step.action is None:
            result.add_error("NoAction", f"Step {sid} has no action", sid)
        else:
            problem = step.action.validate()
            if problem:
                result.add_error("InvalidParameters", f"Step {sid}: {problem}", sid)

            if self.strict:
                if not isinstance(step.action, self.allowed_action_types):
                    result.add_error(
                        "InvalidActionType",
                        f"Step {sid} uses disallowed action type {type(step.action).__name__}",
                        sid,
                    )
                for unknown in sorted(set(step.action.parameters) - step.action.accepted_parameters):
                    result.add_warning(
                        "UnknownParameter", f"Step {sid} action has unknown parameter '{unknown}'", sid
                    )

        if forward and step.step_type == StepType.ROLLBACK:
            result.add_error("InvalidStepType", f"Step {sid} is a rollback step in the forward plan", sid)
        if step.max_retries is not None and step.max_retries < 0:
            result.add_error("InvalidRetryCount", f"Step {sid} max retries cannot be negative", sid)
        if step.retry_delay_seconds is not None and step.retry_delay_seconds < 0:
            result.add_error("InvalidRetryDelay", f"Step {sid} retry delay cannot be negative", sid)
        if step.timeout_seconds is not None and step.timeout_seconds <= 0:
            result.add_error("InvalidTimeout", f"Step {sid} timeout must be positive", sid)
        if sid in step.depends_on:
            result.add_error("DependencyCycle", f"Step {sid} depends on itself", sid)
        return result
