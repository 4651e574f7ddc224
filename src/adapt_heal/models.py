"""
Core data models for ADAPT-Heal using Pydantic for validation.

``ErrorContext`` is the immutable incident snapshot every component reads.
It is frozen: derived state is produced with ``model_copy`` instead of
mutation, so the graph analyzer and the advisory client can read the same
instance from different tasks.
"""
from datetime import datetime, timezone
from enum import Enum, IntEnum
from typing import Any, Dict, Optional, Tuple, Union
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator
from dateutil import parser as date_parser

from .constants import (
    METRIC_ERROR_RATE,
    METRIC_RESOURCE_UTILIZATION,
    METRIC_RESPONSE_TIME,
)

MetadataValue = Union[str, int, float, bool, None]


class _OrdinalLevel(IntEnum):
    """Five-tier ordinal shared by severity and risk."""

    @classmethod
    def parse(cls, value: Any) -> "_OrdinalLevel":
        """Accept a member, its integer value, or its name in any case."""
        if isinstance(value, cls):
            return value
        if isinstance(value, int) and not isinstance(value, bool):
            return cls(value)
        if isinstance(value, str):
            try:
                return cls[value.strip().upper()]
            except KeyError:
                raise ValueError(
                    f"Unknown {cls.__name__} '{value}'; expected one of "
                    f"{[m.name.lower() for m in cls]}"
                ) from None
        raise ValueError(f"Cannot interpret {value!r} as {cls.__name__}")

    @property
    def label(self) -> str:
        return self.name.capitalize()


class Severity(_OrdinalLevel):
    """Error severity, ordered None < Low < Medium < High < Critical."""
    NONE = 0
    LOW = 1
    MEDIUM = 2
    HIGH = 3
    CRITICAL = 4


class RiskLevel(_OrdinalLevel):
    """Remediation risk, ordered like Severity."""
    NONE = 0
    LOW = 1
    MEDIUM = 2
    HIGH = 3
    CRITICAL = 4


def max_risk(*levels: RiskLevel) -> RiskLevel:
    """Highest of the given risk levels (NONE when called with none)."""
    return max(levels, default=RiskLevel.NONE)


class ImpactScope(str, Enum):
    """How far a failure or a remediation reaches."""
    LOCAL = "local"
    COMPONENT = "component"
    SERVICE = "service"
    SYSTEM = "system"
    GLOBAL = "global"

    @classmethod
    def parse(cls, value: Any) -> "ImpactScope":
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            return cls(value.strip().lower())
        raise ValueError(f"Cannot interpret {value!r} as ImpactScope")


class ComponentLink(BaseModel):
    """A directed edge between two components."""
    model_config = ConfigDict(frozen=True)

    source: str
    target: str


def _parse_links(v: Any) -> Any:
    """Accept ``[src, dst]`` pairs as well as ``{source, target}`` mappings."""
    if v is None:
        return ()
    items = []
    for item in v:
        if isinstance(item, (list, tuple)) and len(item) == 2:
            items.append({"source": item[0], "target": item[1]})
        else:
            items.append(item)
    return tuple(items)


class ErrorContext(BaseModel):
    """
    Immutable snapshot of one incident.

    Attributes:
        error_type: Error classification used to select strategies
        message: Error message as captured
        source_component: Component where the error originated
        severity: Error severity
        impact_scope: Reach of the failure, used for risk assessment
        component_graph: component -> components depending on it
        component_metrics: component -> {error_rate, response_time_ms, resource_utilization}
        dependencies: Explicit dependency edges
        service_calls: Explicit service-call edges
        data_flows: Explicit data-flow edges
        affected_components: Components already known to be affected
        correlation_id: Identifier tying logs, plans and metrics together
        timestamp: When the error was captured
        metadata: Extra primitive values (host, region, ...)
    """
    model_config = ConfigDict(frozen=True)

    error_type: str = ""
    message: str = ""
    source_component: Optional[str] = None
    severity: Severity = Severity.MEDIUM
    impact_scope: ImpactScope = ImpactScope.COMPONENT
    component_graph: Dict[str, Tuple[str, ...]] = Field(default_factory=dict)
    component_metrics: Dict[str, Dict[str, float]] = Field(default_factory=dict)
    dependencies: Tuple[ComponentLink, ...] = ()
    service_calls: Tuple[ComponentLink, ...] = ()
    data_flows: Tuple[ComponentLink, ...] = ()
    affected_components: Tuple[str, ...] = ()
    correlation_id: str = Field(default_factory=lambda: uuid4().hex)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    metadata: Dict[str, MetadataValue] = Field(default_factory=dict)

    @field_validator('severity', mode='before')
    @classmethod
    def parse_severity(cls, v: Any) -> Severity:
        """Accept names such as "high" or "Critical"."""
        return Severity.parse(v)

    @field_validator('impact_scope', mode='before')
    @classmethod
    def parse_scope(cls, v: Any) -> ImpactScope:
        return ImpactScope.parse(v)

    @field_validator('component_graph', mode='before')
    @classmethod
    def normalize_graph(cls, v: Any) -> Dict[str, Tuple[str, ...]]:
        """Deduplicate adjacency lists while keeping first-seen order."""
        if v is None:
            return {}
        return {node: tuple(dict.fromkeys(targets or ())) for node, targets in v.items()}

    @field_validator('dependencies', 'service_calls', 'data_flows', mode='before')
    @classmethod
    def parse_links(cls, v: Any) -> Any:
        return _parse_links(v)

    @field_validator('timestamp', mode='before')
    @classmethod
    def parse_timestamp(cls, v: Any) -> Any:
        """Parse timestamp strings in any format dateutil understands."""
        if isinstance(v, str):
            return date_parser.parse(v)
        return v

    def has_graph(self) -> bool:
        return bool(self.component_graph)

    def dependents(self, component: str) -> Tuple[str, ...]:
        return self.component_graph.get(component, ())

    def metric(self, component: str, name: str) -> Optional[float]:
        """A component metric, or None when not reported."""
        value = self.component_metrics.get(component, {}).get(name)
        return float(value) if value is not None else None

    def error_rate(self, component: str) -> Optional[float]:
        return self.metric(component, METRIC_ERROR_RATE)

    def response_time_ms(self, component: str) -> Optional[float]:
        return self.metric(component, METRIC_RESPONSE_TIME)

    def resource_utilization(self, component: str) -> Optional[float]:
        return self.metric(component, METRIC_RESOURCE_UTILIZATION)

    def components(self) -> Tuple[str, ...]:
        """All components named by the graph, in first-seen order."""
        seen: Dict[str, None] = {}
        for source, targets in self.component_graph.items():
            seen.setdefault(source, None)
            for target in targets:
                seen.setdefault(target, None)
        return tuple(seen)

    def fact(self, name: str) -> Any:
        """
        Look up a named value for step and trigger conditions.

        Top-level fields win over metadata keys; ``metric.<component>.<name>``
        reads a component metric.
        """
        if name.startswith("metric."):
            _, _, rest = name.partition(".")
            component, _, metric_name = rest.rpartition(".")
            return self.metric(component, metric_name)
        if name == "severity":
            return self.severity.name.lower()
        if name == "impact_scope":
            return self.impact_scope.value
        if name in ("error_type", "message", "source_component", "correlation_id"):
            return getattr(self, name)
        return self.metadata.get(name)

    def with_metadata(self, **extra: MetadataValue) -> "ErrorContext":
        """Copy of this context with additional metadata."""
        return self.model_copy(update={"metadata": {**self.metadata, **extra}})
