"""
Tests for plan execution: ordering, retries, timeouts, approval and rollback.
"""
import pytest

from adapt_heal.config import HealConfig
from adapt_heal.logging_context import get_context
from adapt_heal.metrics import RemediationMetricsSink
from adapt_heal.remediation.actions import FunctionAction
from adapt_heal.remediation.executor import RemediationExecutor
from adapt_heal.remediation.plan import RemediationStatus, RollbackOrder

S = RemediationStatus


class RecordingSink(RemediationMetricsSink):
    def __init__(self):
        self.steps = []
        self.plans = []
        self.values = []

    def record_metric(self, metric_id, name, value):
        self.values.append((metric_id, name, value))

    def record_step_metrics(self, step_metrics):
        self.steps.append(step_metrics)

    def record_remediation_metrics(self, remediation_metrics):
        self.plans.append(remediation_metrics)


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def executor(sink):
    return RemediationExecutor(metrics_sink=sink)


@pytest.fixture
def chain(recorder, make_step):
    """Steps a -> b -> c, each undoable."""
    def factory(**overrides):
        actions = {name: recorder.action(name, **overrides.get(name, {})) for name in "abc"}
        return [
            make_step("a", actions["a"]),
            make_step("b", actions["b"], depends_on=["a"]),
            make_step("c", actions["c"], depends_on=["b"]),
        ]
    return factory


@pytest.mark.asyncio
async def test_runs_steps_in_dependency_order(executor, chain, make_plan, recorder, context):
    """Test a healthy plan completes with every step run once."""
    plan = make_plan(reversed(chain()))

    result = await executor.execute(plan, context)

    assert result.succeeded
    assert result.message == "All steps completed"
    assert recorder.runs() == ["a", "b", "c"]
    assert plan.execution_order == ["a", "b", "c"]
    assert sorted(result.completed_steps) == ["a", "b", "c"]
    assert not result.rolled_back
    assert executor.get_action_status("plan-test", "b").attempts == 1


@pytest.mark.asyncio
async def test_retries_are_bounded(executor, recorder, make_step, make_plan, context):
    """Test a failing step runs 1 + max_retries times and then fails."""
    step = make_step("a", recorder.action("a", fails=-1, rollback=False))
    plan = make_plan([step], max_retries=3)

    result = await executor.execute(plan, context)

    assert recorder.runs() == ["a"] * 4
    assert step.attempts == 4
    assert step.retry_count == 3
    assert step.status == S.FAILED
    assert result.status == S.FAILED
    assert result.failed_step == "a"
    assert result.error == "a failed on attempt 4"
    assert result.message == "Plan plan-test failed at step a; no rollback performed"
    assert executor.get_action_status("plan-test", "a").attempts == 4


@pytest.mark.asyncio
async def test_retry_then_succeed(executor, recorder, make_step, make_plan, context):
    """Test a transient failure recovers before retries run out."""
    step = make_step("a", recorder.action("a", fails=2))
    plan = make_plan([step], max_retries=3)

    result = await executor.execute(plan, context)

    assert result.succeeded
    assert step.retry_count == 2
    assert [h.status for h in step.history] == [
        S.IN_PROGRESS, S.RETRYING, S.IN_PROGRESS, S.RETRYING, S.IN_PROGRESS, S.COMPLETED,
    ]


@pytest.mark.asyncio
async def test_step_retry_override(executor, recorder, make_step, make_plan, context):
    """Test a step's own retry limit beats the plan's."""
    step = make_step("a", recorder.action("a", fails=-1, rollback=False), max_retries=0)
    plan = make_plan([step], max_retries=5)

    await executor.execute(plan, context)

    assert recorder.runs() == ["a"]


@pytest.mark.asyncio
@pytest.mark.parametrize("order, expected", [
    (RollbackOrder.REVERSE, ["c", "b", "a"]),
    (RollbackOrder.FORWARD, ["a", "b", "c"]),
])
async def test_rollback_order(executor, chain, make_plan, recorder, context, order, expected):
    """Test rollback undoes attempted steps in the configured order."""
    plan = make_plan(chain(c={"fails": -1}), order=order, max_retries=0)

    result = await executor.execute(plan, context)

    assert recorder.rollbacks() == expected
    assert result.status == S.FAILED
    assert result.rollback.rolled_back_steps == expected
    assert result.rollback.is_complete
    assert result.message == "Plan plan-test failed at step c; rolled back 3 step(s)"
    assert all(step.status == S.ROLLED_BACK for step in plan.steps)
    assert plan.rollback_plan.status == S.COMPLETED


@pytest.mark.asyncio
async def test_rollback_failure_is_reported(executor, chain, make_plan, recorder, context):
    """Test a failed rollback action leaves the plan failed and says so."""
    plan = make_plan(chain(b={"rollback_fails": True}, c={"fails": -1}), max_retries=0)

    result = await executor.execute(plan, context)

    assert recorder.rollbacks() == ["c", "b", "a"]
    assert result.status == S.FAILED
    assert result.rollback.failed_actions == ["b:rollback"]
    assert result.rollback.errors["b:rollback"] == "b cannot be undone"
    assert result.message.endswith("rollback incomplete, failed: b:rollback")
    assert plan.get_step("b").status == S.COMPLETED
    assert plan.get_step("a").status == S.ROLLED_BACK
    assert plan.rollback_plan.status == S.FAILED


@pytest.mark.asyncio
async def test_rollback_runs_only_once(executor, chain, make_plan, recorder, context):
    """Test a triggered rollback plan is not available again."""
    plan = make_plan(chain(c={"fails": -1}), max_retries=0)

    await executor.execute(plan, context)

    assert plan.rollback_plan.triggered
    assert not plan.rollback_plan.is_available


@pytest.mark.asyncio
async def test_rollback_disabled(sink, chain, make_plan, recorder, context):
    """Test no rollback runs when it is switched off."""
    executor = RemediationExecutor(HealConfig(enable_rollback=False), metrics_sink=sink)
    plan = make_plan(chain(c={"fails": -1}), max_retries=0)

    result = await executor.execute(plan, context)

    assert recorder.rollbacks() == []
    assert result.rollback is None
    assert result.message.endswith("no rollback performed")


@pytest.mark.asyncio
async def test_no_rollback_when_nothing_attempted_can_be_undone(executor, recorder, make_step, make_plan, context):
    """Test a failure before any undoable step ran leaves the rollback plan untouched."""
    plan = make_plan([
        make_step("a", recorder.action("a", fails=-1, rollback=False)),
        make_step("b", recorder.action("b"), depends_on=["a"]),
    ], max_retries=0)

    result = await executor.execute(plan, context)

    assert result.status == S.FAILED
    assert result.rollback is None
    assert not result.rolled_back
    assert result.message == "Plan plan-test failed at step a; no rollback performed"
    assert recorder.rollbacks() == []
    assert not plan.rollback_plan.triggered
    assert plan.rollback_plan.status == S.NOT_STARTED


@pytest.mark.asyncio
async def test_failure_cancels_dependents(executor, recorder, make_step, make_plan, context):
    """Test steps after a failed required step do not run."""
    plan = make_plan([
        make_step("a", recorder.action("a", fails=-1, rollback=False)),
        make_step("b", recorder.action("b"), depends_on=["a"]),
    ], max_retries=0)

    result = await executor.execute(plan, context)

    assert recorder.runs() == ["a"]
    assert plan.get_step("b").status == S.CANCELLED
    assert plan.get_step("b").status_message == "Not run: step a failed"
    assert result.cancelled_steps == ["b"]


@pytest.mark.asyncio
async def test_optional_failure_continues(executor, recorder, make_step, make_plan, context):
    """Test an optional step's failure does not fail the plan."""
    plan = make_plan([
        make_step("a", recorder.action("a")),
        make_step("b", recorder.action("b", fails=-1), depends_on=["a"], optional=True),
        make_step("c", recorder.action("c"), depends_on=["b"]),
        make_step("d", recorder.action("d"), depends_on=["a"]),
    ], max_retries=0)

    result = await executor.execute(plan, context)

    assert result.status == S.COMPLETED
    assert result.message == "Plan completed; skipped c"
    assert result.failed_steps == ["b"]
    assert plan.get_step("c").status_message == "Skipped: dependencies not completed (b)"
    assert recorder.runs() == ["a", "b", "d"]
    assert recorder.rollbacks() == []


@pytest.mark.asyncio
async def test_step_timeout(executor, recorder, make_step, make_plan, context):
    """Test an action exceeding its timeout is retried and then timed out."""
    step = make_step("a", recorder.action("a", delay=1.0, rollback=False), timeout_seconds=0.05)
    plan = make_plan([step], max_retries=1)

    result = await executor.execute(plan, context)

    assert recorder.runs() == ["a", "a"]
    assert step.status == S.TIMED_OUT
    assert step.error == "a timed out after 0.05s"
    assert result.status == S.FAILED
    assert result.failed_steps == ["a"]


@pytest.mark.asyncio
async def test_plan_timeout(executor, recorder, make_step, make_plan, context):
    """Test the plan deadline stops the running step and cancels the rest."""
    plan = make_plan([
        make_step("a", recorder.action("a", delay=5.0, rollback=False)),
        make_step("b", recorder.action("b"), depends_on=["a"]),
    ], timeout_seconds=0.1)

    result = await executor.execute(plan, context)

    assert result.status == S.TIMED_OUT
    assert plan.get_step("a").status == S.TIMED_OUT
    assert plan.get_step("b").status == S.CANCELLED
    assert result.error == "Plan timed out after 0.1s"
    assert result.message == "Plan plan-test timed out; no rollback performed"
    assert recorder.runs() == ["a"]


@pytest.mark.asyncio
async def test_plan_waits_for_approval(executor, chain, make_plan, recorder, context):
    """Test a plan needing approval runs nothing until approved."""
    plan = make_plan(chain(), requires_approval=True)

    waiting = await executor.execute(plan, context)

    assert waiting.waiting_for_approval
    assert waiting.message == "Plan requires approval"
    assert recorder.runs() == []

    plan.approved = True
    result = await executor.execute(plan, context)

    assert result.succeeded
    assert recorder.runs() == ["a", "b", "c"]
    assert plan.history[1].message == "Resuming plan"


@pytest.mark.asyncio
async def test_step_approval_pauses_and_resumes(executor, recorder, make_step, make_plan, context):
    """Test a gated step pauses the plan without re-running earlier steps."""
    gated = make_step("b", recorder.action("b"), depends_on=["a"], requires_approval=True)
    plan = make_plan([make_step("a", recorder.action("a")), gated])

    paused = await executor.execute(plan, context)

    assert paused.status == S.WAITING_FOR_APPROVAL
    assert paused.message == "Step b requires approval"
    assert gated.status == S.WAITING_FOR_APPROVAL
    assert recorder.runs() == ["a"]

    gated.approved = True
    result = await executor.execute(plan, context)

    assert result.succeeded
    assert recorder.runs() == ["a", "b"]


@pytest.mark.asyncio
async def test_invalid_plan_not_executed(executor, make_plan, context):
    """Test validation failure leaves the plan untouched."""
    plan = make_plan([])

    result = await executor.execute(plan, context)

    assert result.status == S.NOT_STARTED
    assert result.message == "Plan failed validation"
    assert result.error == "Plan must contain at least one step"
    assert not result.validation.is_valid


@pytest.mark.asyncio
async def test_cancel_stops_before_next_step(executor, make_step, make_plan, recorder, context):
    """Test cancelling a running plan lets the current step finish."""
    def cancel_own_plan(ctx):
        assert executor.cancel("plan-test", "operator request")
        return True

    plan = make_plan([
        make_step("a", FunctionAction("a", cancel_own_plan)),
        make_step("b", recorder.action("b"), depends_on=["a"]),
    ])

    result = await executor.execute(plan, context)

    assert result.status == S.CANCELLED
    assert plan.get_step("a").status == S.COMPLETED
    assert plan.get_step("b").status == S.CANCELLED
    assert recorder.runs() == []
    assert not executor.cancel("plan-test")


def test_cancel_unknown_plan(executor):
    """Test cancelling a plan the executor never saw."""
    assert not executor.cancel("nope")


@pytest.mark.asyncio
async def test_cancel_waiting_plan(executor, chain, make_plan, context):
    """Test a plan waiting for approval is cancelled outright."""
    plan = make_plan(chain(), requires_approval=True)
    await executor.execute(plan, context)

    assert executor.cancel("plan-test", "no longer needed")

    assert plan.status == S.CANCELLED
    assert all(step.status == S.CANCELLED for step in plan.steps)


@pytest.mark.asyncio
async def test_metrics_reported(executor, sink, chain, make_plan, context):
    """Test step and plan metrics reach the sink."""
    plan = make_plan(chain(c={"fails": -1}), max_retries=1)

    await executor.execute(plan, context)

    forward = [m for m in sink.steps if m.step_type == "execution"]
    rollback = [m for m in sink.steps if m.step_type == "rollback"]
    assert [(m.step_id, m.status) for m in forward] == [
        ("a", "completed"), ("b", "completed"), ("c", "failed"),
    ]
    assert forward[-1].attempts == 2
    assert len(rollback) == 3
    assert sink.plans[0].status == "failed"
    assert sink.plans[0].rolled_back
    assert sink.values == [("plan-test", "remediation_plan_steps_completed", 0.0)]


@pytest.mark.asyncio
async def test_broken_sink_does_not_affect_outcome(chain, make_plan, context):
    """Test a sink that raises is ignored."""
    executor = RemediationExecutor(metrics_sink=RemediationMetricsSink())

    result = await executor.execute(make_plan(chain()), context)

    assert result.succeeded


@pytest.mark.asyncio
async def test_execute_many(executor, recorder, make_step, make_plan, context):
    """Test independent plans run concurrently with results in input order."""
    first = make_plan([make_step("a", recorder.action("a", delay=0.05))], plan_id="p1")
    second = make_plan([make_step("b", recorder.action("b", fails=-1, rollback=False))],
                       plan_id="p2", max_retries=0)

    results = await executor.execute_many([(first, context), (second, context)])

    assert [r.plan_id for r in results] == ["p1", "p2"]
    assert [r.status for r in results] == [S.COMPLETED, S.FAILED]
    assert set(executor.get_all_executions()) == {"p1/a", "p2/b"}


@pytest.mark.asyncio
async def test_actions_run_inside_logging_context(executor, make_step, make_plan, context):
    """Test plan and step ids are bound to the log context during an action."""
    seen = {}

    async def capture(ctx):
        seen.update(get_context())
        return True

    await executor.execute(make_plan([make_step("a", FunctionAction("a", capture))]), context)

    assert seen["plan_id"] == "plan-test"
    assert seen["action_id"] == "a"
    assert seen["correlation_id"] == "corr-test"
