#!/usr/bin/env python3
"""
Remediation Demo

This script walks one incident through ADAPT-Heal: graph analysis,
strategy ranking, plan approval, execution and rollback.
"""

import asyncio
import sys
from pathlib import Path

# Add src to path for running from examples directory
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from adapt_heal.advisory.client import StaticAdvisoryClient
from adapt_heal.config import HealConfig
from adapt_heal.graph.graph_analyzer import GraphAnalyzer
from adapt_heal.logging_config import setup_logging
from adapt_heal.models import ErrorContext
from adapt_heal.remediation import (
    ExecutionStatus,
    FunctionAction,
    LogAction,
    RemediationEngine,
    RunbookStrategy,
    StepDefinition,
    StepType,
)

CONTEXT = ErrorContext(
    error_type="DatabaseTimeout",
    message="connection pool exhausted",
    source_component="OrderDB",
    severity="high",
    component_graph={
        "OrderDB": ["OrderService", "ReportWorker"],
        "OrderService": ["Checkout"],
    },
    component_metrics={
        "OrderDB": {"error_rate": 0.35, "response_time_ms": 850},
        "OrderService": {"error_rate": 0.1},
    },
)

pool_size = {"OrderDB": 20}


def grow_pool(context):
    pool_size["OrderDB"] += 10
    return f"pool size now {pool_size['OrderDB']}"


def shrink_pool(context):
    pool_size["OrderDB"] -= 10
    return f"pool size back to {pool_size['OrderDB']}"


def verify_latency(context):
    # Pretend the fix did not help, to show rollback
    return False


def build_strategies():
    monitor = RunbookStrategy(
        name="Monitor",
        description="Record the incident and keep watching",
        priority=1,
        supported_error_types=["DatabaseTimeout"],
        steps=[StepDefinition("note", LogAction("note", "{error_type} on {source_component}"))],
    )
    resize = RunbookStrategy(
        name="ResizePool",
        description="Grow the connection pool, then verify latency",
        priority=2,
        supported_error_types=["DatabaseTimeout"],
        target_component="OrderDB",
        steps=[
            StepDefinition("grow", FunctionAction("grow-pool", grow_pool, rollback_func=shrink_pool),
                           step_type=StepType.EXECUTION),
            StepDefinition("verify", FunctionAction("verify-latency", verify_latency),
                           step_type=StepType.VERIFICATION, depends_on=["grow"]),
        ],
    )
    return [monitor, resize]


def demo_graph():
    """Demonstrate graph analysis on its own."""
    print("=" * 70)
    print("DEMO 1: Graph Analysis")
    print("=" * 70)

    analysis = GraphAnalyzer().analyze(CONTEXT)
    for component, health in sorted(analysis.component_health.items()):
        print(f"{component:<15} health {health:.0%}")
    print(f"Affected: {', '.join(analysis.propagation.affected_components)}")
    print()


async def demo_ranking(engine):
    """Demonstrate strategy ranking."""
    print("=" * 70)
    print("DEMO 2: Strategy Ranking")
    print("=" * 70)

    analysis = await engine.analyzer.analyze(CONTEXT)
    for rec in analysis.recommendations:
        print(f"{rec.strategy_name:<12} {rec.confidence:.2f}  {rec.reasoning}")
    print()


async def demo_approval_and_rollback(engine):
    """Demonstrate the approval gate and a rolled back plan."""
    print("=" * 70)
    print("DEMO 3: Approval and Rollback")
    print("=" * 70)

    result = await engine.remediate(CONTEXT)
    print(f"Status: {result.status.value}")

    if result.status == ExecutionStatus.PENDING_APPROVAL:
        print(f"Plan {result.plan_id} needs approval; approving")
        result = await engine.approve(result.execution_id, approver="demo")

    print(f"Status: {result.status.value}")
    print(f"Message: {result.execution.message}")
    print(f"Pool size after rollback: {pool_size['OrderDB']}")
    print()


async def main():
    setup_logging(level="WARNING")

    config = HealConfig(approval_risk_level="high", max_retries=1, retry_delay_seconds=0.1)
    engine = RemediationEngine(
        config=config,
        advisory_client=StaticAdvisoryClient(
            {"Monitor": 0.3, "ResizePool": 0.9},
            explanations={"ResizePool": "Pool exhaustion matches the error"},
        ),
    )
    for strategy in build_strategies():
        engine.register_strategy(strategy)

    demo_graph()
    await demo_ranking(engine)
    await demo_approval_and_rollback(engine)

    print("Statistics:", engine.get_statistics())


if __name__ == "__main__":
    asyncio.run(main())
