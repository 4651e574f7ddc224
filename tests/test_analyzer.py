"""
Tests for strategy scoring and ranking.
"""
import pytest

from adapt_heal.advisory.client import AdvisoryClient, NullAdvisoryClient, StaticAdvisoryClient
from adapt_heal.config import HealConfig
from adapt_heal.models import ErrorContext
from adapt_heal.remediation.actions import LogAction
from adapt_heal.remediation.analyzer import (
    AnalysisFailure,
    RemediationAnalyzer,
    StrategyRecommendation,
    rank_recommendations,
)
from adapt_heal.remediation.registry import StrategyRegistry
from adapt_heal.remediation.strategies import RunbookStrategy, StepDefinition


def _strategy(name, priority):
    return RunbookStrategy(
        name, description=f"{name} strategy", priority=priority,
        supported_error_types=["DatabaseError"],
        steps=[StepDefinition("log", LogAction(f"{name}-log", "{error_type} seen"))],
    )


@pytest.fixture
def registry():
    registry = StrategyRegistry()
    registry.register(_strategy("Monitor", 1))
    registry.register(_strategy("Backup", 3))
    return registry


@pytest.fixture
def advisory():
    return StaticAdvisoryClient(
        {"Monitor": 0.8, "Backup": 0.4},
        explanations={"Monitor": "Low-risk first step"},
    )


class ExplodingClient(AdvisoryClient):
    async def analyze(self, context, strategy_names=None):
        raise RuntimeError("boom")


@pytest.mark.asyncio
async def test_ranks_by_combined_confidence(registry, advisory, context):
    """Test graph health and advisory scores combine with priority."""
    analysis = await RemediationAnalyzer(registry, advisory).analyze(context)

    assert analysis.is_valid
    assert [r.strategy_name for r in analysis.recommendations] == ["Monitor", "Backup"]
    monitor, backup = analysis.recommendations
    assert monitor.confidence == pytest.approx((0.4 * 0.4 + 0.6 * 0.8) * 5 / 5)
    assert backup.confidence == pytest.approx((0.4 * 0.4 + 0.6 * 0.4) * 3 / 5)
    assert monitor.graph_health == pytest.approx(0.4)
    assert analysis.warnings == ()
    assert analysis.correlation_id == "corr-test"


@pytest.mark.asyncio
async def test_reasoning_lists_contributions(registry, advisory, context):
    """Test reasoning names each contributing signal."""
    analysis = await RemediationAnalyzer(registry, advisory).analyze(context)

    assert analysis.top.reasoning == (
        "Component health: 40%; Advisory confidence: 80%; Strategy priority: 1/5; "
        "Advisory explanation: Low-risk first step"
    )
    assert analysis.recommendations[1].reasoning == (
        "Component health: 40%; Advisory confidence: 40%; Strategy priority: 3/5"
    )


@pytest.mark.asyncio
async def test_strategy_named_like_component_uses_its_health(context):
    """Test a strategy named after a component scores that component's health."""
    registry = StrategyRegistry()
    registry.register(_strategy("api", 1))

    analysis = await RemediationAnalyzer(registry, StaticAdvisoryClient({"api": 0.5})).analyze(context)

    assert analysis.top.graph_health == pytest.approx(1.0)
    assert analysis.top.confidence == pytest.approx(0.4 + 0.3)


@pytest.mark.asyncio
async def test_unscored_strategy_uses_graph_only(registry, context):
    """Test a strategy the advisory model left out gets no advisory term."""
    analysis = await RemediationAnalyzer(registry, StaticAdvisoryClient({"Monitor": 0.8})).analyze(context)

    backup = analysis.recommendations[1]
    assert backup.advisory_score is None
    assert backup.confidence == pytest.approx(0.4 * 0.4 * 3 / 5)
    assert "Advisory confidence" not in backup.reasoning


def test_ties_go_to_lower_priority():
    """Test equal confidence ranks the more urgent strategy first."""
    ranked = rank_recommendations([
        StrategyRecommendation("Slow", priority=4, confidence=0.5, reasoning=""),
        StrategyRecommendation("Fast", priority=2, confidence=0.5, reasoning=""),
        StrategyRecommendation("Best", priority=5, confidence=0.9, reasoning=""),
    ])

    assert [r.strategy_name for r in ranked] == ["Best", "Fast", "Slow"]


@pytest.mark.asyncio
async def test_graph_only_when_advisory_disabled(registry, context):
    """Test scoring falls back to graph health with a warning."""
    analysis = await RemediationAnalyzer(registry, NullAdvisoryClient()).analyze(context)

    assert analysis.is_valid
    assert analysis.top.confidence == pytest.approx(0.4 * 0.4)
    assert analysis.warnings == ("Scoring from graph signal only: Advisory model disabled",)


@pytest.mark.asyncio
async def test_graph_only_can_be_disallowed(registry, context):
    """Test a missing advisory signal is fatal when graph-only is off."""
    config = HealConfig(allow_graph_only=False)

    analysis = await RemediationAnalyzer(registry, NullAdvisoryClient(), config=config).analyze(context)

    assert not analysis.is_valid
    assert analysis.failure == AnalysisFailure.ADVISORY_FAILED
    assert analysis.error_message == "Advisory model disabled"


@pytest.mark.asyncio
async def test_raising_client_is_treated_as_missing_signal(registry, context):
    """Test an exception from the advisory client degrades to graph only."""
    analysis = await RemediationAnalyzer(registry, ExplodingClient()).analyze(context)

    assert analysis.is_valid
    assert analysis.warnings == ("Scoring from graph signal only: Advisory call failed: boom",)


@pytest.mark.asyncio
async def test_advisory_only_without_graph(registry, advisory):
    """Test scoring falls back to advisory scores without a graph."""
    context = ErrorContext(error_type="DatabaseError", source_component="db")

    analysis = await RemediationAnalyzer(registry, advisory).analyze(context)

    assert analysis.is_valid
    assert analysis.top.confidence == pytest.approx(0.6 * 0.8)
    assert analysis.warnings == (
        "Scoring from advisory signal only: Context does not contain component graph data",
    )

    strict = RemediationAnalyzer(registry, advisory, config=HealConfig(allow_advisory_only=False))
    failed = await strict.analyze(context)
    assert failed.failure == AnalysisFailure.NO_GRAPH_DATA


@pytest.mark.asyncio
async def test_no_signal_at_all(registry):
    """Test an analysis without graph or advisory signal is invalid."""
    context = ErrorContext(error_type="DatabaseError")

    analysis = await RemediationAnalyzer(registry).analyze(context)

    assert not analysis.is_valid
    assert analysis.failure == AnalysisFailure.NO_GRAPH_DATA
    assert analysis.error_message.startswith("Context does not contain component graph data")


@pytest.mark.asyncio
@pytest.mark.parametrize("context, failure, message", [
    (None, AnalysisFailure.INVALID_CONTEXT, "Error context is required"),
    (ErrorContext(error_type="  "), AnalysisFailure.INVALID_CONTEXT, "Error context has no error type"),
    (ErrorContext(error_type="DiskFull"), AnalysisFailure.NO_STRATEGIES,
     "No strategies found for error type 'DiskFull'"),
])
async def test_invalid_inputs(registry, context, failure, message):
    """Test expected failures come back as invalid analyses."""
    analysis = await RemediationAnalyzer(registry).analyze(context)

    assert not analysis.is_valid
    assert analysis.failure == failure
    assert analysis.error_message == message
    assert analysis.recommendations == ()


@pytest.mark.asyncio
async def test_min_confidence_filters(registry, advisory, context):
    """Test recommendations below the minimum confidence are dropped."""
    kept = await RemediationAnalyzer(registry, advisory, config=HealConfig(min_confidence=0.5)).analyze(context)
    assert [r.strategy_name for r in kept.recommendations] == ["Monitor"]

    none = await RemediationAnalyzer(registry, advisory, config=HealConfig(min_confidence=0.9)).analyze(context)
    assert none.failure == AnalysisFailure.NO_STRATEGIES
    assert none.error_message == "No strategy reached minimum confidence 0.9"


@pytest.mark.asyncio
async def test_get_recommended_strategy(registry, advisory, context):
    """Test the top recommendation is returned, or None."""
    analyzer = RemediationAnalyzer(registry, advisory)

    assert (await analyzer.get_recommended_strategy(context)).strategy_name == "Monitor"
    assert await analyzer.get_recommended_strategy(None) is None


@pytest.mark.parametrize("health, score, priority, expected", [
    (1.0, 1.0, 1, 1.0),
    (None, None, 1, 0.0),
    (1.0, 1.0, 5, 0.2),
    (1.0, 1.0, 0, 1.0),
    (0.5, None, 1, 0.2),
])
def test_calculate_confidence(health, score, priority, expected):
    """Test the confidence formula and its clamp."""
    assert RemediationAnalyzer.calculate_confidence(health, score, priority) == pytest.approx(expected)


@pytest.mark.asyncio
async def test_analysis_serializes(registry, advisory, context):
    """Test the analysis converts to plain data."""
    data = (await RemediationAnalyzer(registry, advisory).analyze(context)).to_dict()

    assert data["is_valid"] is True
    assert data["recommendations"][0]["strategy_name"] == "Monitor"
    assert data["advisory_analysis"]["model"] == "static"
