"""
Remediation strategies.

A strategy is a named, versioned remediation approach: it declares the
error types it handles, its priority (1 = most urgent, 5 = least) and the
steps it contributes to a plan. ``RunbookStrategy`` covers the common case
declaratively; hosts subclass ``RemediationStrategy`` for anything else.

Example:
    >>> restart = RunbookStrategy(
    ...     name="RestartService",
    ...     description="Restart the failing service",
    ...     priority=2,
    ...     supported_error_types=["ServiceUnavailable"],
    ...     steps=[
    ...         StepDefinition("drain", drain_action, step_type=StepType.PREPARATION),
    ...         StepDefinition("restart", restart_action, depends_on=["drain"],
    ...                        rollback_action=start_old_action),
    ...     ],
    ... )
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Sequence

from ..constants import MAX_STRATEGY_PRIORITY, MIN_STRATEGY_PRIORITY
from ..models import ErrorContext, ImpactScope
from .actions import RemediationAction
from .plan import RemediationStep, StepType

logger = logging.getLogger(__name__)

WILDCARD_ERROR_TYPE = "*"

CONDITION_OPERATORS = ("==", "!=", ">", "<", ">=", "<=", "contains")


@dataclass
class StepCondition:
    """
    Condition evaluated against an ErrorContext.

    ``field`` names a context fact: a top-level field (error_type,
    severity, source_component, impact_scope, message), a metadata key, or
    ``metric.<component>.<metric>``.
    """

    field: str
    operator: str  # "==", "!=", ">", "<", ">=", "<=", "contains"
    value: Any
    description: Optional[str] = None

    def evaluate(self, context: ErrorContext) -> bool:
        actual_value = context.fact(self.field)
        if actual_value is None:
            logger.debug(f"Field '{self.field}' not in context, condition failed")
            return False

        try:
            if self.operator == "==":
                result = actual_value == self.value
            elif self.operator == "!=":
                result = actual_value != self.value
            elif self.operator == ">":
                result = float(actual_value) > float(self.value)
            elif self.operator == "<":
                result = float(actual_value) < float(self.value)
            elif self.operator == ">=":
                result = float(actual_value) >= float(self.value)
            elif self.operator == "<=":
                result = float(actual_value) <= float(self.value)
            elif self.operator == "contains":
                result = self.value in actual_value
            else:
                logger.error(f"Unknown operator: {self.operator}")
                return False
        except (TypeError, ValueError) as e:
            logger.error(f"Error evaluating condition on '{self.field}': {e}")
            return False

        logger.debug(
            f"Condition: {self.field} {self.operator} {self.value} "
            f"(actual: {actual_value}) = {result}"
        )
        return result


class RemediationStrategy(ABC):
    """
    Base class for remediation strategies.

    Attributes:
        name: Unique strategy name (registry key together with version)
        description: Human-readable summary
        priority: 1 (most urgent) to 5 (least urgent)
        supported_error_types: Error types handled; "*" matches any
        version: Semantic version string
        impact_scope: How far the strategy's actions reach
        target_component: Component the strategy acts on, if fixed
        requires_approval: Plans using this strategy need approval
        trigger_conditions: Extra conditions the context must meet
        parameters: Strategy parameters, checked against accepted_parameters
    """

    accepted_parameters: FrozenSet[str] = frozenset()

    def __init__(
        self,
        name: str,
        description: str = "",
        priority: int = 3,
        supported_error_types: Iterable[str] = (),
        version: str = "1.0.0",
        impact_scope: ImpactScope = ImpactScope.COMPONENT,
        target_component: Optional[str] = None,
        requires_approval: bool = False,
        trigger_conditions: Sequence[StepCondition] = (),
        parameters: Optional[Dict[str, Any]] = None,
    ):
        self.name = name
        self.description = description
        self.priority = priority
        self.supported_error_types = list(supported_error_types)
        self.version = version
        self.impact_scope = impact_scope
        self.target_component = target_component
        self.requires_approval = requires_approval
        self.trigger_conditions = list(trigger_conditions)
        self.parameters = dict(parameters or {})

    def supports_error_type(self, error_type: str) -> bool:
        return (WILDCARD_ERROR_TYPE in self.supported_error_types
                or error_type in self.supported_error_types)

    def can_handle(self, context: ErrorContext) -> bool:
        """Error type matches and every trigger condition holds."""
        if not self.supports_error_type(context.error_type):
            return False
        return all(condition.evaluate(context) for condition in self.trigger_conditions)

    def graph_key(self, context: ErrorContext) -> Optional[str]:
        """Component whose health informs this strategy's confidence."""
        return self.target_component or context.source_component

    @abstractmethod
    def build_steps(self, context: ErrorContext) -> List[RemediationStep]:
        """Steps this strategy contributes to a plan for ``context``."""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "priority": self.priority,
            "supported_error_types": list(self.supported_error_types),
            "version": self.version,
            "impact_scope": self.impact_scope.value,
            "target_component": self.target_component,
            "requires_approval": self.requires_approval,
            "parameters": dict(self.parameters),
        }

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name={self.name!r}, version={self.version!r}, priority={self.priority})"


@dataclass
class StepDefinition:
    """Declarative description of one step in a RunbookStrategy."""

    name: str
    action: RemediationAction
    step_type: StepType = StepType.EXECUTION
    rollback_action: Optional[RemediationAction] = None
    depends_on: List[str] = field(default_factory=list)
    optional: bool = False
    requires_approval: bool = False
    max_retries: Optional[int] = None
    retry_delay_seconds: Optional[float] = None
    timeout_seconds: Optional[float] = None
    conditions: List[StepCondition] = field(default_factory=list)
    description: Optional[str] = None
    parameters: Dict[str, Any] = field(default_factory=dict)

    def should_execute(self, context: ErrorContext) -> bool:
        return all(condition.evaluate(context) for condition in self.conditions)


class RunbookStrategy(RemediationStrategy):
    """
    Strategy defined by a list of StepDefinitions.

    Step ids are ``<strategy>:<step>``. Steps whose conditions do not hold
    for the context are left out, and dependencies on them are dropped.
    """

    def __init__(self, name: str, steps: Sequence[StepDefinition] = (), **kwargs: Any):
        super().__init__(name, **kwargs)
        self.steps = list(steps)

    def step_id(self, step_name: str) -> str:
        return f"{self.name}:{step_name}"

    def build_steps(self, context: ErrorContext) -> List[RemediationStep]:
        selected = [d for d in self.steps if d.should_execute(context)]
        selected_names = {d.name for d in selected}

        skipped = len(self.steps) - len(selected)
        if skipped:
            logger.debug(f"Strategy {self.name}: {skipped} step(s) skipped by conditions")

        steps = []
        for position, definition in enumerate(selected):
            depends_on = []
            for dependency in definition.depends_on:
                if dependency in selected_names:
                    depends_on.append(self.step_id(dependency))
                elif dependency in {d.name for d in self.steps}:
                    logger.debug(
                        f"Strategy {self.name}: dropping dependency {definition.name} -> "
                        f"{dependency} (step not selected)"
                    )
                else:
                    # Unknown names are kept so plan validation reports them
                    depends_on.append(self.step_id(dependency))

            steps.append(RemediationStep(
                step_id=self.step_id(definition.name),
                name=definition.name,
                action=definition.action,
                step_type=definition.step_type,
                rollback_action=definition.rollback_action,
                order=position,
                depends_on=depends_on,
                optional=definition.optional,
                requires_approval=definition.requires_approval,
                max_retries=definition.max_retries,
                retry_delay_seconds=definition.retry_delay_seconds,
                timeout_seconds=definition.timeout_seconds,
                strategy_name=self.name,
                parameters=dict(definition.parameters),
                description=definition.description,
            ))
        return steps

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["steps"] = [
            {
                "name": d.name,
                "step_type": d.step_type.value,
                "action": d.action.name,
                "rollback_action": d.rollback_action.name if d.rollback_action else None,
                "depends_on": list(d.depends_on),
                "optional": d.optional,
                "requires_approval": d.requires_approval,
            }
            for d in self.steps
        ]
        return data


def is_valid_priority(priority: Any) -> bool:
    return (isinstance(priority, int) and not isinstance(priority, bool)
            and MIN_STRATEGY_PRIORITY <= priority <= MAX_STRATEGY_PRIORITY)
