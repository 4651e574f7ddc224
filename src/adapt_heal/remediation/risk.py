"""
Deterministic risk assessment for remediation plans and steps.

Risk is a pure function of error severity and impact scope. Issue and
mitigation texts are fixed per risk tier. No randomness and no external
calls: the same inputs always give the same assessment.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from ..constants import (
    RISK_CONFIDENCE_BASE,
    RISK_CONFIDENCE_CONTEXT,
    RISK_CONFIDENCE_CONTEXT_FIELD,
    RISK_CONFIDENCE_DESCRIPTION,
    RISK_CONFIDENCE_MAX,
    RISK_CONFIDENCE_VALIDATION,
)
from ..models import ErrorContext, ImpactScope, RiskLevel, Severity, max_risk

if TYPE_CHECKING:
    from .plan import RemediationPlan, RemediationStep

logger = logging.getLogger(__name__)

WIDE_SCOPES = frozenset({ImpactScope.GLOBAL, ImpactScope.SYSTEM})

# Risk when the impact reaches the whole system
_WIDE_SCOPE_RISK = {
    Severity.CRITICAL: RiskLevel.CRITICAL,
    Severity.HIGH: RiskLevel.CRITICAL,
    Severity.MEDIUM: RiskLevel.HIGH,
    Severity.LOW: RiskLevel.MEDIUM,
    Severity.NONE: RiskLevel.NONE,
}

POTENTIAL_ISSUES: Dict[RiskLevel, List[str]] = {
    RiskLevel.CRITICAL: [
        "Potential system downtime",
        "Impact on dependent services",
        "May require manual intervention",
        "Data loss risk",
        "Service unavailability",
    ],
    RiskLevel.HIGH: [
        "Potential service disruption",
        "Impact on related components",
        "Requires monitoring",
        "May affect user experience",
    ],
    RiskLevel.MEDIUM: [
        "Minor service disruption possible",
        "Impact on specific functionality",
        "Requires validation",
    ],
    RiskLevel.LOW: [
        "Minimal impact expected",
        "Impact limited to specific component",
    ],
    RiskLevel.NONE: [
        "No significant impact expected",
    ],
}

BASE_MITIGATION_STEPS = [
    "Monitor system metrics during execution",
    "Have rollback plan ready",
]

MITIGATION_STEPS: Dict[RiskLevel, List[str]] = {
    RiskLevel.CRITICAL: [
        "Perform in maintenance window",
        "Notify all stakeholders",
        "Prepare contingency plan",
        "Have backup systems ready",
    ],
    RiskLevel.HIGH: [
        "Perform in low-traffic period",
        "Notify key stakeholders",
        "Test in staging environment first",
    ],
    RiskLevel.MEDIUM: [
        "Consider performing in low-traffic period",
        "Test in staging environment if possible",
    ],
    RiskLevel.LOW: [
        "Proceed with standard precautions",
    ],
    RiskLevel.NONE: [
        "Execute during normal operations",
    ],
}


@dataclass(frozen=True)
class RiskAssessment:
    """
    Risk of executing a plan or a step.

    ``confidence`` is in [0, 1].
    """
    risk_level: RiskLevel
    potential_issues: List[str] = field(default_factory=list)
    mitigation_steps: List[str] = field(default_factory=list)
    confidence: float = 0.0
    severity: Severity = Severity.NONE
    impact_scope: ImpactScope = ImpactScope.COMPONENT
    description: Optional[str] = None
    assessed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "risk_level": self.risk_level.name.lower(),
            "potential_issues": list(self.potential_issues),
            "mitigation_steps": list(self.mitigation_steps),
            "confidence": self.confidence,
            "severity": self.severity.name.lower(),
            "impact_scope": self.impact_scope.value,
            "description": self.description,
            "assessed_at": self.assessed_at.isoformat(),
        }


class RiskAssessor:
    """Maps (severity, impact scope) to a risk level and its guidance."""

    def calculate_risk_level(self, severity: Severity, scope: ImpactScope) -> RiskLevel:
        """
        Global and system scope escalate by one tier (Critical stays Critical);
        any other scope maps severity straight onto risk.
        """
        if scope in WIDE_SCOPES:
            return _WIDE_SCOPE_RISK[severity]
        return RiskLevel(int(severity))

    def generate_potential_issues(self, risk_level: RiskLevel) -> List[str]:
        return list(POTENTIAL_ISSUES[risk_level])

    def generate_mitigation_steps(self, risk_level: RiskLevel) -> List[str]:
        return BASE_MITIGATION_STEPS + MITIGATION_STEPS[risk_level]

    def calculate_confidence(self, description: Optional[str] = None,
                             has_validation_results: bool = False,
                             context: Optional[ErrorContext] = None) -> float:
        """
        Confidence in the assessment, from how much evidence backs it.

        Scored on a 0-100 scale and returned as a fraction.
        """
        score = RISK_CONFIDENCE_BASE
        if description:
            score += RISK_CONFIDENCE_DESCRIPTION
        if has_validation_results:
            score += RISK_CONFIDENCE_VALIDATION
        if context is not None:
            score += RISK_CONFIDENCE_CONTEXT
            if context.error_type:
                score += RISK_CONFIDENCE_CONTEXT_FIELD
            if context.source_component:
                score += RISK_CONFIDENCE_CONTEXT_FIELD
            if context.affected_components:
                score += RISK_CONFIDENCE_CONTEXT_FIELD
        return min(score, RISK_CONFIDENCE_MAX) / 100.0

    def assess(self, severity: Severity, scope: ImpactScope,
               context: Optional[ErrorContext] = None,
               description: Optional[str] = None,
               has_validation_results: bool = False) -> RiskAssessment:
        risk_level = self.calculate_risk_level(severity, scope)
        return RiskAssessment(
            risk_level=risk_level,
            potential_issues=self.generate_potential_issues(risk_level),
            mitigation_steps=self.generate_mitigation_steps(risk_level),
            confidence=self.calculate_confidence(description, has_validation_results, context),
            severity=severity,
            impact_scope=scope,
            description=description,
        )

    def assess_context(self, context: ErrorContext) -> RiskAssessment:
        """Risk of the incident itself, from its severity and scope."""
        return self.assess(context.severity, context.impact_scope, context=context,
                           description=context.message or None)

    def assess_step(self, step: "RemediationStep", context: ErrorContext,
                    scope: Optional[ImpactScope] = None) -> RiskAssessment:
        """Risk of one step; defaults to the incident's scope."""
        return self.assess(
            context.severity,
            scope or context.impact_scope,
            context=context,
            description=step.name,
        )

    def assess_plan(self, plan: "RemediationPlan", context: ErrorContext,
                    scopes: Optional[List[ImpactScope]] = None,
                    has_validation_results: bool = False) -> RiskAssessment:
        """
        Risk of a whole plan: the highest risk across the incident scope and
        the scopes of the strategies the plan was built from.
        """
        candidate_scopes = [context.impact_scope] + list(scopes or [])
        levels = [self.calculate_risk_level(context.severity, s) for s in candidate_scopes]
        risk_level = max_risk(*levels)
        widest = candidate_scopes[levels.index(risk_level)]

        description = f"Plan {plan.plan_id} with {len(plan.steps)} step(s)"
        assessment = RiskAssessment(
            risk_level=risk_level,
            potential_issues=self.generate_potential_issues(risk_level),
            mitigation_steps=self.generate_mitigation_steps(risk_level),
            confidence=self.calculate_confidence(description, has_validation_results, context),
            severity=context.severity,
            impact_scope=widest,
            description=description,
        )
        logger.debug(f"Plan {plan.plan_id} assessed at risk {risk_level.label}")
        return assessment
