"""
Tests for the end-to-end remediation engine.
"""
import pytest

from adapt_heal.advisory.client import StaticAdvisoryClient
from adapt_heal.config import HealConfig
from adapt_heal.models import ErrorContext
from adapt_heal.remediation.engine import ExecutionStatus, RemediationEngine
from adapt_heal.remediation.plan import RemediationStatus
from adapt_heal.remediation.strategies import RunbookStrategy, StepDefinition


def _engine(**config):
    config.setdefault("retry_delay_seconds", 0.0)
    config.setdefault("max_retries", 0)
    return RemediationEngine(
        config=HealConfig(**config),
        advisory_client=StaticAdvisoryClient({"Monitor": 0.8}),
    )


def _monitor(recorder, prepare=None, fix=None, optional=False):
    return RunbookStrategy(
        "Monitor", description="Prepare then fix", priority=1,
        supported_error_types=["DatabaseError"],
        steps=[
            StepDefinition("prepare", recorder.action("prepare", **(prepare or {}))),
            StepDefinition("fix", recorder.action("fix", **(fix or {})),
                           depends_on=["prepare"], optional=optional),
        ],
    )


@pytest.mark.asyncio
async def test_successful_remediation(recorder, context):
    """Test analysis, planning and execution end to end."""
    engine = _engine()
    engine.register_strategy(_monitor(recorder))

    result = await engine.remediate(context)

    assert result.status == ExecutionStatus.SUCCESS
    assert result.strategy_names == ["Monitor"]
    assert result.analysis.top.strategy_name == "Monitor"
    assert result.plan.status == RemediationStatus.COMPLETED
    assert result.plan.owner == "executor"
    assert recorder.runs() == ["prepare", "fix"]
    assert result.error_message is None
    assert result.completed_at is not None
    assert result.execution_id.startswith("rem-")
    assert result.to_dict()["status"] == "success"


@pytest.mark.asyncio
async def test_pending_approval_then_approve(recorder, context):
    """Test a gated plan waits and runs once approved."""
    engine = _engine(approval_risk_level="medium")
    engine.register_strategy(_monitor(recorder))

    pending = await engine.remediate(context)

    assert pending.status == ExecutionStatus.PENDING_APPROVAL
    assert recorder.runs() == []
    assert engine.get_pending_approvals() == [pending]
    assert engine.get_execution_history() == []

    result = await engine.approve(pending.execution_id, approver="oncall")

    assert result.status == ExecutionStatus.SUCCESS
    assert recorder.runs() == ["prepare", "fix"]
    assert engine.get_pending_approvals() == []
    assert engine.get_execution_history() == [result]


@pytest.mark.asyncio
async def test_auto_approve(recorder, context):
    """Test auto approval skips the approval gate."""
    engine = _engine(approval_risk_level="medium")
    engine.register_strategy(_monitor(recorder))

    result = await engine.remediate(context, auto_approve=True)

    assert result.status == ExecutionStatus.SUCCESS


@pytest.mark.asyncio
async def test_reject_pending(recorder, context):
    """Test rejecting a pending remediation cancels its plan."""
    engine = _engine(approval_risk_level="medium")
    engine.register_strategy(_monitor(recorder))
    pending = await engine.remediate(context)

    result = engine.reject(pending.execution_id, "change freeze")

    assert result.status == ExecutionStatus.CANCELLED
    assert result.error_message == "change freeze"
    assert result.plan.status == RemediationStatus.CANCELLED
    assert recorder.runs() == []

    with pytest.raises(ValueError):
        engine.reject(pending.execution_id)


@pytest.mark.asyncio
async def test_approve_unknown_execution():
    """Test approving something that is not pending."""
    with pytest.raises(ValueError, match="No pending approval"):
        await _engine().approve("rem-unknown")


@pytest.mark.asyncio
async def test_failed_analysis(recorder):
    """Test an incident no strategy handles fails without a plan."""
    engine = _engine()
    engine.register_strategy(_monitor(recorder))

    result = await engine.remediate(ErrorContext(error_type="DiskFull", component_graph={"a": ["b"]}))

    assert result.status == ExecutionStatus.FAILED
    assert result.plan is None
    assert result.error_message == "No strategies found for error type 'DiskFull'"
    assert len(engine.get_execution_history()) == 1


@pytest.mark.asyncio
async def test_rolled_back(recorder, context):
    """Test a failed plan whose rollback completed reports rolled back."""
    engine = _engine()
    engine.register_strategy(_monitor(recorder, fix={"fails": -1}))

    result = await engine.remediate(context)

    assert result.status == ExecutionStatus.ROLLED_BACK
    assert result.rollback_performed
    assert recorder.rollbacks() == ["fix", "prepare"]
    assert result.plan.status == RemediationStatus.FAILED
    assert result.error_message == "fix failed on attempt 1"


@pytest.mark.asyncio
async def test_incomplete_rollback_is_failure(recorder, context):
    """Test a rollback that failed leaves the remediation failed."""
    engine = _engine()
    engine.register_strategy(_monitor(recorder, prepare={"rollback_fails": True}, fix={"fails": -1}))

    result = await engine.remediate(context)

    assert result.status == ExecutionStatus.FAILED
    assert result.rollback_performed
    assert result.execution.rollback.failed_actions == ["Monitor:prepare:rollback"]


@pytest.mark.asyncio
async def test_failure_with_nothing_to_undo_is_not_rolled_back(recorder, context):
    """Test a failure before any undoable step ran reports failed, not rolled back."""
    engine = _engine()
    engine.register_strategy(_monitor(recorder, prepare={"fails": -1, "rollback": False}))

    result = await engine.remediate(context)

    assert result.status == ExecutionStatus.FAILED
    assert not result.rollback_performed
    assert result.execution.rollback is None
    assert recorder.runs() == ["prepare"]
    assert recorder.rollbacks() == []


@pytest.mark.asyncio
async def test_partial_when_optional_step_fails(recorder, context):
    """Test an optional failure yields a partial success."""
    engine = _engine()
    engine.register_strategy(_monitor(recorder, fix={"fails": -1}, optional=True))

    result = await engine.remediate(context)

    assert result.status == ExecutionStatus.PARTIAL
    assert result.plan.status == RemediationStatus.COMPLETED
    assert result.error_message is None


@pytest.mark.asyncio
async def test_statistics(recorder, context):
    """Test history statistics over mixed outcomes."""
    engine = _engine()
    engine.register_strategy(_monitor(recorder, fix={"fails": 1}))

    await engine.remediate(context)
    await engine.remediate(context)
    await engine.remediate(ErrorContext(error_type="DiskFull", component_graph={"a": ["b"]}))

    stats = engine.get_statistics()

    assert stats["total_executions"] == 3
    assert stats["success_rate"] == pytest.approx(1 / 3)
    assert stats["status_counts"] == {"rolled_back": 1, "success": 1, "failed": 1}
    assert stats["rollback_count"] == 1
    assert stats["pending_approvals"] == 0


def test_statistics_empty():
    """Test statistics before any remediation."""
    assert _engine().get_statistics()["total_executions"] == 0


@pytest.mark.asyncio
async def test_history_is_bounded():
    """Test history keeps only the newest results up to its limit."""
    engine = RemediationEngine(history_limit=2)
    contexts = [ErrorContext(error_type=f"E{i}") for i in range(3)]

    results = [await engine.remediate(c) for c in contexts]

    history = engine.get_execution_history()
    assert len(history) == 2
    assert results[0] not in history
    assert len(engine.get_execution_history(limit=1)) == 1
