"""Component graph analysis."""
from .graph_analyzer import (
    ComponentRelationship,
    ErrorPropagation,
    GraphAnalysis,
    GraphAnalyzer,
    RelationshipType,
)

__all__ = [
    "ComponentRelationship",
    "ErrorPropagation",
    "GraphAnalysis",
    "GraphAnalyzer",
    "RelationshipType",
]
