"""
Shared fixtures for remediation tests.
"""
import asyncio

import pytest

from adapt_heal.models import ErrorContext
from adapt_heal.remediation import (
    FunctionAction,
    PlanManager,
    RemediationPlan,
    RemediationStep,
    RollbackOrder,
    StrategyRegistry,
)


class Recorder:
    """Builds actions that record every run and rollback they perform."""

    def __init__(self):
        self.calls = []

    def action(self, name, fails=0, rollback=True, delay=0.0, rollback_fails=False):
        """
        ``fails`` failed attempts before succeeding; a negative value fails
        every attempt.
        """
        attempts = {"count": 0}

        async def run(context):
            attempts["count"] += 1
            self.calls.append(("run", name))
            if delay:
                await asyncio.sleep(delay)
            if fails < 0 or attempts["count"] <= fails:
                raise RuntimeError(f"{name} failed on attempt {attempts['count']}")
            return f"{name} done"

        async def undo(context):
            self.calls.append(("rollback", name))
            if rollback_fails:
                raise RuntimeError(f"{name} cannot be undone")
            return f"{name} undone"

        return FunctionAction(name, run, rollback_func=undo if rollback else None)

    def runs(self):
        return [name for kind, name in self.calls if kind == "run"]

    def rollbacks(self):
        return [name for kind, name in self.calls if kind == "rollback"]


@pytest.fixture
def recorder():
    return Recorder()


@pytest.fixture
def context():
    return ErrorContext(
        error_type="DatabaseError",
        message="connection pool exhausted",
        source_component="db",
        component_graph={"db": ["api"], "api": ["web"]},
        component_metrics={"db": {"error_rate": 0.2}},
        correlation_id="corr-test",
    )


@pytest.fixture
def make_step():
    def factory(step_id, action, **kwargs):
        return RemediationStep(step_id=step_id, name=step_id, action=action, **kwargs)
    return factory


@pytest.fixture
def make_plan():
    """Plan over the given steps with a rollback plan and no retry delay."""
    def factory(steps, order=RollbackOrder.REVERSE, plan_id="plan-test", **kwargs):
        kwargs.setdefault("retry_delay_seconds", 0.0)
        plan = RemediationPlan(
            plan_id=plan_id,
            correlation_id="corr-test",
            error_type="DatabaseError",
            steps=list(steps),
            **kwargs,
        )
        plan.rollback_plan = PlanManager(StrategyRegistry()).build_rollback_plan(plan, order)
        return plan
    return factory
