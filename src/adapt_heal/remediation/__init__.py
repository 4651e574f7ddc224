"""
Automated remediation for ADAPT-Heal.

This module turns an analyzed incident into executed remediation:
- Strategy registry and confidence-ranked strategy selection
- Plans with paired rollback plans and risk-based approval gating
- Plan and action validation
- Tracked execution with retries, timeouts and rollback

Classes:
    RemediationEngine: End-to-end remediation orchestration
    RemediationAnalyzer: Strategy scoring
    PlanManager: Plan construction and lifecycle
    RemediationExecutor: Plan execution
    RemediationStrategy: Base class for strategies
    RemediationAction: Base class for actions
"""

from .actions import (
    ActionResult,
    ActionStatus,
    FunctionAction,
    LogAction,
    RemediationAction,
    UndoAction,
    WebhookAction,
)
from .analyzer import (
    AnalysisFailure,
    RemediationAnalysis,
    RemediationAnalyzer,
    StrategyRecommendation,
)
from .engine import ExecutionStatus, RemediationEngine, RemediationResult
from .executor import PlanExecutionResult, RemediationExecutor
from .plan import (
    RemediationPlan,
    RemediationStatus,
    RemediationStep,
    RollbackOrder,
    RollbackPlan,
    StepRollbackStatus,
    StepType,
)
from .plan_manager import PlanManager
from .registry import StrategyMetadata, StrategyRegistry
from .risk import RiskAssessment, RiskAssessor
from .strategies import RemediationStrategy, RunbookStrategy, StepCondition, StepDefinition
from .tracker import ExecutionRecord, ExecutionTracker
from .validator import RemediationValidator, ValidationIssue, ValidationResult

__all__ = [
    "ActionResult",
    "ActionStatus",
    "AnalysisFailure",
    "ExecutionRecord",
    "ExecutionStatus",
    "ExecutionTracker",
    "FunctionAction",
    "LogAction",
    "PlanExecutionResult",
    "PlanManager",
    "RemediationAction",
    "RemediationAnalysis",
    "RemediationAnalyzer",
    "RemediationEngine",
    "RemediationExecutor",
    "RemediationPlan",
    "RemediationResult",
    "RemediationStatus",
    "RemediationStep",
    "RemediationStrategy",
    "RemediationValidator",
    "RiskAssessment",
    "RiskAssessor",
    "RollbackOrder",
    "RollbackPlan",
    "RunbookStrategy",
    "StepCondition",
    "StepDefinition",
    "StepRollbackStatus",
    "StepType",
    "StrategyMetadata",
    "StrategyRecommendation",
    "StrategyRegistry",
    "UndoAction",
    "ValidationIssue",
    "ValidationResult",
    "WebhookAction",
]
