"""
Component graph analysis over an ErrorContext snapshot.

Computes per-component health, classifies and weights every edge of the
component graph, and traces how the error propagates outward from its
source. Everything here is a pure function of the snapshot: no I/O, no
shared state, safe to call from any task or thread.
"""
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from ..constants import (
    BASE_RELATIONSHIP_STRENGTH,
    ERROR_RATE_SIMILARITY_WEIGHT,
    ERROR_SOURCE_HEALTH_FACTOR,
    PATH_LENGTH_DECAY,
    PROPAGATION_EDGE_BONUS,
    PROPAGATION_ERROR_RATE_WEIGHT,
    PROPAGATION_PATH_SEVERITY_THRESHOLD,
    PROPAGATION_RESPONSE_TIME_WEIGHT,
    PROPAGATION_SOURCE_BONUS,
    RESPONSE_TIME_NORMALIZER_MS,
)
from ..models import ComponentLink, ErrorContext

logger = logging.getLogger(__name__)

NO_GRAPH_DATA_MESSAGE = "Context does not contain component graph data"


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


class RelationshipType(str, Enum):
    """How two components are connected."""
    DIRECT_DEPENDENCY = "direct_dependency"
    SERVICE_CALL = "service_call"
    DATA_FLOW = "data_flow"
    INDIRECT = "indirect"


@dataclass(frozen=True)
class ComponentRelationship:
    """A weighted, classified edge of the component graph."""
    source: str
    target: str
    type: RelationshipType
    strength: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source,
            "target": self.target,
            "type": self.type.value,
            "strength": self.strength,
        }


@dataclass(frozen=True)
class ErrorPropagation:
    """
    Result of walking the graph outward from the error source.

    Attributes:
        affected_components: Every component reached, in visit order
        propagation_paths: Paths to leaves and to badly hit components
        component_severity: Per-component propagation severity in [0, 1]
    """
    affected_components: Tuple[str, ...] = ()
    propagation_paths: Tuple[Tuple[str, ...], ...] = ()
    component_severity: Dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "affected_components": list(self.affected_components),
            "propagation_paths": [list(p) for p in self.propagation_paths],
            "component_severity": dict(self.component_severity),
        }


@dataclass(frozen=True)
class GraphAnalysis:
    """
    Outcome of a graph analysis.

    An invalid analysis carries ``error_message`` and empty results; it is a
    normal return value, not an error.
    """
    is_valid: bool
    correlation_id: str
    component_health: Dict[str, float] = field(default_factory=dict)
    relationships: Tuple[ComponentRelationship, ...] = ()
    propagation: ErrorPropagation = field(default_factory=ErrorPropagation)
    error_message: Optional[str] = None
    analyzed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def invalid(cls, message: str, correlation_id: str = "") -> "GraphAnalysis":
        return cls(is_valid=False, correlation_id=correlation_id, error_message=message)

    def health_of(self, component: Optional[str]) -> Optional[float]:
        if component is None:
            return None
        return self.component_health.get(component)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_valid": self.is_valid,
            "correlation_id": self.correlation_id,
            "error_message": self.error_message,
            "component_health": dict(self.component_health),
            "relationships": [r.to_dict() for r in self.relationships],
            "propagation": self.propagation.to_dict(),
            "analyzed_at": self.analyzed_at.isoformat(),
        }


class GraphAnalyzer:
    """
    Analyzes the component graph carried by an ErrorContext.

    Example:
        >>> analysis = GraphAnalyzer().analyze(context)
        >>> if analysis.is_valid:
        ...     print(analysis.component_health["OrderService"])
    """

    def analyze(self, context: Optional[ErrorContext]) -> GraphAnalysis:
        """
        Run the full analysis.

        Returns an invalid GraphAnalysis when the context is missing or its
        component graph is empty.
        """
        if context is None:
            return GraphAnalysis.invalid("Error context is required")

        if not context.has_graph():
            logger.info(
                f"No component graph for correlation {context.correlation_id}; "
                "graph analysis skipped"
            )
            return GraphAnalysis.invalid(NO_GRAPH_DATA_MESSAGE, context.correlation_id)

        health = {
            component: self.calculate_component_health(context, component)
            for component in context.components()
        }
        relationships = tuple(self.analyze_relationships(context))
        propagation = self.calculate_error_propagation(context)

        logger.debug(
            f"Graph analysis for {context.correlation_id}: {len(health)} components, "
            f"{len(relationships)} relationships, "
            f"{len(propagation.affected_components)} affected"
        )

        return GraphAnalysis(
            is_valid=True,
            correlation_id=context.correlation_id,
            component_health=health,
            relationships=relationships,
            propagation=propagation,
        )

    def calculate_component_health(self, context: ErrorContext, component: str) -> float:
        """
        Health in [0, 1]: 1.0 discounted by error rate, latency and
        utilization, halved for the error source.
        """
        health = 1.0

        error_rate = context.error_rate(component)
        if error_rate is not None:
            health *= 1 - min(error_rate, 1.0)

        response_time = context.response_time_ms(component)
        if response_time is not None:
            health *= 1 - min(response_time / RESPONSE_TIME_NORMALIZER_MS, 1.0)

        utilization = context.resource_utilization(component)
        if utilization is not None:
            health *= 1 - min(utilization, 1.0)

        if component == context.source_component:
            health *= ERROR_SOURCE_HEALTH_FACTOR

        return _clamp(health)

    def analyze_relationships(self, context: ErrorContext) -> List[ComponentRelationship]:
        relationships = []
        for source, targets in context.component_graph.items():
            for target in targets:
                relationships.append(ComponentRelationship(
                    source=source,
                    target=target,
                    type=self.classify_relationship(context, source, target),
                    strength=self.calculate_relationship_strength(context, source, target),
                ))
        return relationships

    def classify_relationship(self, context: ErrorContext, source: str,
                              target: str) -> RelationshipType:
        """Classify by the explicit edge lists; unmatched edges are indirect."""
        edge = ComponentLink(source=source, target=target)
        if edge in context.dependencies:
            return RelationshipType.DIRECT_DEPENDENCY
        if edge in context.service_calls:
            return RelationshipType.SERVICE_CALL
        if edge in context.data_flows:
            return RelationshipType.DATA_FLOW
        return RelationshipType.INDIRECT

    def calculate_relationship_strength(self, context: ErrorContext, source: str,
                                        target: str) -> float:
        strength = BASE_RELATIONSHIP_STRENGTH

        error_source = context.source_component
        if source == error_source and target in context.dependents(error_source):
            strength += PROPAGATION_EDGE_BONUS

        source_rate = context.error_rate(source)
        target_rate = context.error_rate(target)
        if source_rate is not None and target_rate is not None:
            strength += ERROR_RATE_SIMILARITY_WEIGHT * (1 - abs(source_rate - target_rate))

        return _clamp(strength)

    def calculate_error_propagation(self, context: ErrorContext) -> ErrorPropagation:
        """
        Breadth-first walk from the error source.

        Each component is visited once, through its shortest path. A path is
        kept when it ends at a leaf or at a component whose severity exceeds
        the propagation threshold.
        """
        source = context.source_component
        if not source:
            return ErrorPropagation()

        affected: List[str] = []
        paths: List[Tuple[str, ...]] = []
        severity: Dict[str, float] = {}

        visited = {source}
        queue = deque([(source, (source,))])

        while queue:
            component, path = queue.popleft()
            affected.append(component)

            component_severity = self.calculate_propagation_severity(context, component, path)
            severity[component] = component_severity

            if not context.dependents(component) or \
                    component_severity > PROPAGATION_PATH_SEVERITY_THRESHOLD:
                paths.append(path)

            for dependent in context.dependents(component):
                if dependent not in visited:
                    visited.add(dependent)
                    queue.append((dependent, path + (dependent,)))

        return ErrorPropagation(
            affected_components=tuple(affected),
            propagation_paths=tuple(paths),
            component_severity=severity,
        )

    def calculate_propagation_severity(self, context: ErrorContext, component: str,
                                       path: Tuple[str, ...]) -> float:
        value = 1 - PATH_LENGTH_DECAY * (len(path) - 1)

        error_rate = context.error_rate(component)
        if error_rate is not None:
            value += PROPAGATION_ERROR_RATE_WEIGHT * error_rate

        response_time = context.response_time_ms(component)
        if response_time is not None:
            value += PROPAGATION_RESPONSE_TIME_WEIGHT * min(
                response_time / RESPONSE_TIME_NORMALIZER_MS, 1.0
            )

        if component == context.source_component:
            value += PROPAGATION_SOURCE_BONUS

        return _clamp(value)
