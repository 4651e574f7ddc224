"""
Tests for plan, strategy, context and action validation.
"""
import pytest

from adapt_heal.models import ErrorContext
from adapt_heal.remediation.actions import ActionResult, FunctionAction, LogAction, RemediationAction
from adapt_heal.remediation.plan import RemediationPlan, RemediationStatus, RemediationStep, StepType
from adapt_heal.remediation.strategies import RunbookStrategy, StepDefinition
from adapt_heal.remediation.validator import RemediationValidator, execution_order, find_cycle


def _noop(context):
    return True


def _step(step_id, depends_on=(), **kwargs):
    return RemediationStep(step_id=step_id, name=step_id, action=FunctionAction(step_id, _noop),
                           depends_on=list(depends_on), **kwargs)


def _plan(steps, **kwargs):
    return RemediationPlan(plan_id="p1", correlation_id="c1", error_type="DatabaseError",
                           steps=list(steps), **kwargs)


class ShellAction(RemediationAction):
    def execute(self, context):
        return ActionResult.success("ran")


@pytest.fixture
def validator():
    return RemediationValidator()


def test_valid_plan(validator):
    """Test a well-formed plan passes."""
    result = validator.validate_plan(_plan([_step("a"), _step("b", ["a"])]))

    assert result.is_valid
    assert result.summary() == ""


def test_plan_without_steps(validator):
    """Test an empty plan is rejected."""
    result = validator.validate_plan(_plan([]))

    assert not result.is_valid
    assert result.error_messages == ["Plan must contain at least one step"]


def test_missing_plan(validator):
    """Test None is reported rather than raised."""
    assert validator.validate_plan(None).has_error("MissingPlan")


def test_duplicate_and_unknown_dependencies(validator):
    """Test duplicate ids and dangling dependencies are itemized."""
    result = validator.validate_plan(_plan([_step("a"), _step("a"), _step("b", ["ghost"])]))

    assert result.has_error("DuplicateStepId")
    assert result.has_error("UnknownDependency")


def test_dependency_cycle(validator):
    """Test cycles are reported with their path."""
    result = validator.validate_plan(_plan([_step("a", ["c"]), _step("b", ["a"]), _step("c", ["b"])]))

    assert result.has_error("DependencyCycle")
    assert "a -> c -> b -> a" in result.summary()


def test_self_dependency(validator):
    """Test a step depending on itself is a cycle."""
    assert validator.validate_plan(_plan([_step("a", ["a"])])).has_error("DependencyCycle")


def test_plan_limits(validator):
    """Test non-positive timeouts and negative retries are rejected."""
    result = validator.validate_plan(_plan(
        [_step("a", max_retries=-1, timeout_seconds=0, retry_delay_seconds=-1)],
        timeout_seconds=0, max_retries=-2,
    ))

    codes = [issue.code for issue in result.errors]
    assert codes.count("InvalidTimeout") == 2
    assert codes.count("InvalidRetryCount") == 2
    assert "InvalidRetryDelay" in codes


def test_plan_must_be_startable(validator):
    """Test plans past the approval gate cannot be validated for start."""
    plan = _plan([_step("a")])
    plan.transition_to(RemediationStatus.IN_PROGRESS)

    assert validator.validate_plan(plan).has_error("InvalidPlanState")


def test_step_without_action(validator):
    """Test a step needs an action."""
    step = RemediationStep(step_id="a", name="a", action=None)

    assert validator.validate_plan(_plan([step])).has_error("NoAction")


def test_rollback_step_in_forward_plan(validator):
    """Test rollback steps belong in the rollback plan."""
    result = validator.validate_plan(_plan([_step("a", step_type=StepType.ROLLBACK)]))

    assert result.has_error("InvalidStepType")


def test_action_configuration_checked(validator):
    """Test an action's own validation is surfaced."""
    step = RemediationStep(step_id="a", name="a", action=LogAction("log", "", level="INFO"))

    result = validator.validate_plan(_plan([step]))

    assert result.has_error("InvalidParameters")
    assert "Message is required" in result.summary()


def test_strict_mode_action_types():
    """Test strict mode rejects unknown action types and warns on parameters."""
    step = RemediationStep(step_id="a", name="a",
                           action=ShellAction("shell", parameters={"cmd": "ls"}))
    plan = _plan([step])

    assert RemediationValidator().validate_plan(plan).is_valid

    result = RemediationValidator(strict=True).validate_plan(plan)
    assert result.has_error("InvalidActionType")
    assert [w.code for w in result.warnings] == ["UnknownParameter"]


def test_context_validation(validator):
    """Test context errors and warnings."""
    assert validator.validate_context(None).has_error("MissingContext")

    bare = validator.validate_context(ErrorContext(error_type=" "))
    assert bare.has_error("MissingErrorType")
    assert {w.code for w in bare.warnings} == {"MissingErrorSource", "NoComponentGraph"}

    stray = validator.validate_context(
        ErrorContext(error_type="E", source_component="cache", component_graph={"db": ["api"]})
    )
    assert stray.is_valid
    assert [w.code for w in stray.warnings] == ["UnknownErrorSource"]


def test_strategy_validation(validator, context):
    """Test strategy checks."""
    good = RunbookStrategy("Monitor", description="Watch", priority=1,
                           supported_error_types=["DatabaseError"],
                           steps=[StepDefinition("watch", FunctionAction("w", _noop))])
    assert validator.validate_strategy(good, context).is_valid

    bad = RunbookStrategy("Broken", priority=9, version="one",
                          steps=[StepDefinition("x", FunctionAction("x", _noop)),
                                 StepDefinition("x", FunctionAction("x", _noop))])
    result = validator.validate_strategy(bad, context)
    codes = {issue.code for issue in result.errors}
    assert codes == {"MissingDescription", "InvalidPriority", "InvalidVersion", "DuplicateStepId"}
    assert {w.code for w in result.warnings} == {"NoErrorTypes", "UnsupportedErrorType"}


def test_validate_action_dependencies(validator, context):
    """Test an action cannot run before its dependencies completed."""
    first, second = _step("a"), _step("b", ["a"])
    plan = _plan([first, second])

    assert validator.validate_action(second, context, plan).has_error("DependencyNotCompleted")

    first.transition_to(RemediationStatus.IN_PROGRESS)
    first.transition_to(RemediationStatus.COMPLETED)
    assert validator.validate_action(second, context, plan).is_valid


def test_validate_action_approval_and_state(validator):
    """Test approval and start state are checked."""
    gated = _step("a", requires_approval=True)
    assert validator.validate_action(gated).has_error("ApprovalRequired")

    gated.approved = True
    assert validator.validate_action(gated).is_valid

    gated.transition_to(RemediationStatus.IN_PROGRESS)
    assert validator.validate_action(gated).has_error("InvalidState")
    assert validator.validate_action(None).has_error("MissingStep")


def test_find_cycle_none():
    """Test acyclic steps have no cycle."""
    assert find_cycle([_step("a"), _step("b", ["a"]), _step("c", ["a", "b"])]) is None


def test_execution_order_topological():
    """Test dependencies run first and ready steps follow their order."""
    steps = [
        _step("late", order=5),
        _step("verify", ["fix"], order=0),
        _step("fix", ["prepare"], order=1),
        _step("prepare", order=2),
    ]

    assert [s.step_id for s in execution_order(steps)] == ["prepare", "fix", "verify", "late"]


def test_execution_order_rejects_unknown_dependency():
    """Test an unresolved dependency is a programming error."""
    with pytest.raises(ValueError):
        execution_order([_step("a", ["ghost"])])
