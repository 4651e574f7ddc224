"""
Strategy scoring.

Combines the graph signal (component health) and the advisory signal
(per-strategy model scores) into ranked StrategyRecommendations:

    confidence = (0.4 * health + 0.6 * advisory) * (6 - priority) / 5

clamped to [0, 1]; an absent term counts as 0. Recommendations are sorted
by confidence descending, ties going to the more urgent (lower) priority.

Expected failures (bad context, no applicable strategies, no usable signal)
come back as an invalid RemediationAnalysis carrying an AnalysisFailure and
a message, never as an exception.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..advisory.client import AdvisoryAnalysis, AdvisoryClient, NullAdvisoryClient
from ..config import HealConfig
from ..constants import (
    ADVISORY_SCORE_WEIGHT,
    GRAPH_HEALTH_WEIGHT,
    MAX_STRATEGY_PRIORITY,
    PRIORITY_SCALE_BASE,
)
from ..graph.graph_analyzer import GraphAnalysis, GraphAnalyzer
from ..models import ErrorContext
from ..security.sanitization import sanitize_for_logging
from .registry import StrategyRegistry
from .strategies import RemediationStrategy

logger = logging.getLogger(__name__)


class AnalysisFailure(str, Enum):
    """Why an analysis is invalid."""
    INVALID_CONTEXT = "invalid_context"
    NO_GRAPH_DATA = "no_graph_data"
    ADVISORY_FAILED = "advisory_failed"
    NO_STRATEGIES = "no_strategies"


@dataclass(frozen=True)
class StrategyRecommendation:
    """A scored strategy."""
    strategy_name: str
    priority: int
    confidence: float
    reasoning: str
    version: str = "1.0.0"
    graph_health: Optional[float] = None
    advisory_score: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "strategy_name": self.strategy_name,
            "priority": self.priority,
            "confidence": self.confidence,
            "reasoning": self.reasoning,
            "version": self.version,
            "graph_health": self.graph_health,
            "advisory_score": self.advisory_score,
        }


@dataclass(frozen=True)
class RemediationAnalysis:
    """Ranked recommendations plus the signals they were computed from."""
    is_valid: bool
    correlation_id: str = ""
    error_type: str = ""
    recommendations: Tuple[StrategyRecommendation, ...] = ()
    graph_analysis: Optional[GraphAnalysis] = None
    advisory_analysis: Optional[AdvisoryAnalysis] = None
    error_message: Optional[str] = None
    failure: Optional[AnalysisFailure] = None
    warnings: Tuple[str, ...] = ()
    analyzed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def invalid(cls, failure: AnalysisFailure, message: str,
                context: Optional[ErrorContext] = None, **kwargs: Any) -> "RemediationAnalysis":
        return cls(
            is_valid=False,
            correlation_id=context.correlation_id if context else "",
            error_type=context.error_type if context else "",
            error_message=message,
            failure=failure,
            **kwargs,
        )

    @property
    def top(self) -> Optional[StrategyRecommendation]:
        return self.recommendations[0] if self.recommendations else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_valid": self.is_valid,
            "correlation_id": self.correlation_id,
            "error_type": self.error_type,
            "error_message": self.error_message,
            "failure": self.failure.value if self.failure else None,
            "warnings": list(self.warnings),
            "recommendations": [r.to_dict() for r in self.recommendations],
            "graph_analysis": self.graph_analysis.to_dict() if self.graph_analysis else None,
            "advisory_analysis": (
                self.advisory_analysis.to_dict() if self.advisory_analysis else None
            ),
            "analyzed_at": self.analyzed_at.isoformat(),
        }


def rank_recommendations(
    recommendations: Sequence[StrategyRecommendation],
) -> List[StrategyRecommendation]:
    """Confidence descending; equal confidence goes to the lower priority number."""
    return sorted(recommendations, key=lambda r: (-r.confidence, r.priority, r.strategy_name))


class RemediationAnalyzer:
    """
    Scores the strategies registered for an error.

    Graph analysis and the advisory call run concurrently. When one signal
    is missing the analyzer degrades to the other, as allowed by
    ``config.allow_graph_only`` / ``config.allow_advisory_only``.

    Example:
        >>> analyzer = RemediationAnalyzer(registry, StaticAdvisoryClient({"Monitor": 0.8}))
        >>> analysis = await analyzer.analyze(context)
        >>> analysis.top.strategy_name
        'Monitor'
    """

    def __init__(self, registry: StrategyRegistry,
                 advisory_client: Optional[AdvisoryClient] = None,
                 graph_analyzer: Optional[GraphAnalyzer] = None,
                 config: Optional[HealConfig] = None):
        self.registry = registry
        self.advisory_client = advisory_client or NullAdvisoryClient()
        self.graph_analyzer = graph_analyzer or GraphAnalyzer()
        self.config = config or HealConfig()

    async def analyze(self, context: Optional[ErrorContext]) -> RemediationAnalysis:
        if context is None:
            return RemediationAnalysis.invalid(
                AnalysisFailure.INVALID_CONTEXT, "Error context is required"
            )
        if not context.error_type.strip():
            return RemediationAnalysis.invalid(
                AnalysisFailure.INVALID_CONTEXT, "Error context has no error type", context
            )

        strategies = self.registry.get_applicable_strategies(context)
        if not strategies:
            logger.warning(f"No strategies registered for error type '{context.error_type}'")
            return RemediationAnalysis.invalid(
                AnalysisFailure.NO_STRATEGIES,
                f"No strategies found for error type '{context.error_type}'",
                context,
            )

        advisory_task = asyncio.create_task(
            self._request_advisory(context, [s.name for s in strategies])
        )
        graph = self.graph_analyzer.analyze(context)
        advisory = await advisory_task

        warnings: List[str] = []
        if not graph.is_valid and not advisory.is_valid:
            return RemediationAnalysis.invalid(
                AnalysisFailure.NO_GRAPH_DATA,
                f"{graph.error_message}; advisory unavailable: {advisory.error_message}",
                context,
                graph_analysis=graph,
                advisory_analysis=advisory,
            )
        if not graph.is_valid:
            if not self.config.allow_advisory_only:
                return RemediationAnalysis.invalid(
                    AnalysisFailure.NO_GRAPH_DATA, graph.error_message, context,
                    graph_analysis=graph, advisory_analysis=advisory,
                )
            warnings.append(f"Scoring from advisory signal only: {graph.error_message}")
        if not advisory.is_valid:
            if not self.config.allow_graph_only:
                return RemediationAnalysis.invalid(
                    AnalysisFailure.ADVISORY_FAILED, advisory.error_message, context,
                    graph_analysis=graph, advisory_analysis=advisory,
                )
            warnings.append(f"Scoring from graph signal only: {advisory.error_message}")

        for warning in warnings:
            logger.warning(f"{context.correlation_id}: {sanitize_for_logging(warning)}")

        scored = [self.score_strategy(s, context, graph, advisory) for s in strategies]
        kept = [r for r in scored if r.confidence >= self.config.min_confidence]
        if not kept:
            return RemediationAnalysis.invalid(
                AnalysisFailure.NO_STRATEGIES,
                f"No strategy reached minimum confidence {self.config.min_confidence}",
                context,
                graph_analysis=graph,
                advisory_analysis=advisory,
                warnings=tuple(warnings),
            )

        ranked = rank_recommendations(kept)
        logger.info(
            f"Ranked {len(ranked)} strategies for {context.correlation_id}; "
            f"top: {ranked[0].strategy_name} ({ranked[0].confidence:.2f})"
        )
        return RemediationAnalysis(
            is_valid=True,
            correlation_id=context.correlation_id,
            error_type=context.error_type,
            recommendations=tuple(ranked),
            graph_analysis=graph,
            advisory_analysis=advisory,
            warnings=tuple(warnings),
        )

    async def get_recommended_strategy(
        self, context: Optional[ErrorContext]
    ) -> Optional[StrategyRecommendation]:
        """Highest-ranked recommendation, or None when the analysis is invalid."""
        analysis = await self.analyze(context)
        return analysis.top if analysis.is_valid else None

    def score_strategy(self, strategy: RemediationStrategy, context: ErrorContext,
                       graph: Optional[GraphAnalysis],
                       advisory: Optional[AdvisoryAnalysis]) -> StrategyRecommendation:
        """
        Score one strategy.

        The graph term is the health of the component named like the
        strategy when there is one, otherwise of the strategy's own graph
        key (its target component, else the error source).
        """
        health = None
        if graph is not None and graph.is_valid:
            health = graph.health_of(strategy.name)
            if health is None:
                health = graph.health_of(strategy.graph_key(context))

        score = None
        explanation = None
        if advisory is not None and advisory.is_valid:
            score = advisory.score_for(strategy.name)
            explanation = advisory.explanation_for(strategy.name)

        confidence = self.calculate_confidence(health, score, strategy.priority)

        reasons = []
        if health is not None:
            reasons.append(f"Component health: {health:.0%}")
        if score is not None:
            reasons.append(f"Advisory confidence: {score:.0%}")
        reasons.append(f"Strategy priority: {strategy.priority}/{MAX_STRATEGY_PRIORITY}")
        if explanation:
            reasons.append(f"Advisory explanation: {explanation}")

        return StrategyRecommendation(
            strategy_name=strategy.name,
            priority=strategy.priority,
            confidence=confidence,
            reasoning="; ".join(reasons),
            version=strategy.version,
            graph_health=health,
            advisory_score=score,
        )

    @staticmethod
    def calculate_confidence(health: Optional[float], score: Optional[float],
                             priority: int) -> float:
        weighted = GRAPH_HEALTH_WEIGHT * (health or 0.0) + ADVISORY_SCORE_WEIGHT * (score or 0.0)
        scaled = weighted * (PRIORITY_SCALE_BASE - priority) / MAX_STRATEGY_PRIORITY
        return max(0.0, min(1.0, scaled))

    async def _request_advisory(self, context: ErrorContext,
                                strategy_names: List[str]) -> AdvisoryAnalysis:
        try:
            return await self.advisory_client.analyze(context, strategy_names)
        except Exception as e:
            # The advisory client is pluggable; treat anything it raises as no signal
            logger.exception(f"Advisory client raised for {context.correlation_id}")
            return AdvisoryAnalysis.invalid(f"Advisory call failed: {e}")
