"""
Command-line interface for ADAPT-Heal.

Subcommands:
    analyze   Graph analysis, risk and (with strategies) ranked recommendations
    risk      Risk table lookup for a severity / impact scope pair
    version   Version information
    config    Show or validate configuration
"""
import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import ValidationError

from . import __version__
from .advisory.client import AdvisoryClient, StaticAdvisoryClient, create_advisory_client
from .config import HealConfig
from .exceptions import RegistryError
from .graph.graph_analyzer import GraphAnalysis, GraphAnalyzer
from .logging_config import configure_cli_logging
from .models import ErrorContext, ImpactScope, Severity
from .remediation.actions import LogAction
from .remediation.analyzer import RemediationAnalysis, RemediationAnalyzer
from .remediation.registry import StrategyRegistry
from .remediation.risk import RiskAssessment, RiskAssessor
from .remediation.strategies import RunbookStrategy, StepDefinition

logger = logging.getLogger(__name__)

STRATEGY_FIELDS = (
    "description", "priority", "supported_error_types", "version",
    "target_component", "requires_approval",
)


def load_document(path: Path) -> Any:
    """
    Load a JSON or YAML document.

    Raises:
        ValueError: If the file cannot be read or parsed
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            return yaml.safe_load(f)
    except OSError as e:
        raise ValueError(f"Cannot read {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ValueError(f"Cannot parse {path}: {e}") from e


def load_context(path: Path) -> ErrorContext:
    data = load_document(path)
    if not isinstance(data, dict):
        raise ValueError(f"{path} must contain a mapping")
    try:
        return ErrorContext.model_validate(data)
    except ValidationError as e:
        raise ValueError(f"Invalid error context in {path}: {e}") from e


def load_strategies(path: Path) -> StrategyRegistry:
    """
    Build a registry from a strategies file.

    The file holds a list of mappings (or ``{"strategies": [...]}``) with
    name, description, priority, supported_error_types, version,
    target_component, impact_scope and an optional list of step names.
    Steps only log, since the CLI never executes plans.
    """
    data = load_document(path)
    if isinstance(data, dict):
        data = data.get("strategies", [])
    if not isinstance(data, list):
        raise ValueError(f"{path} must contain a list of strategies")

    registry = StrategyRegistry()
    for entry in data:
        if not isinstance(entry, dict) or "name" not in entry:
            raise ValueError(f"Strategy entries need a name: {entry!r}")
        kwargs: Dict[str, Any] = {k: entry[k] for k in STRATEGY_FIELDS if k in entry}
        if "impact_scope" in entry:
            kwargs["impact_scope"] = ImpactScope.parse(entry["impact_scope"])
        steps = [
            StepDefinition(str(step), LogAction(str(step), f"{entry['name']}: {step}"))
            for step in entry.get("steps", [])
        ]
        registry.register(RunbookStrategy(entry["name"], steps=steps, **kwargs))
    return registry


def _advisory_client(args: argparse.Namespace, config: HealConfig) -> AdvisoryClient:
    if args.scores:
        scores = json.loads(args.scores)
        if not isinstance(scores, dict):
            raise ValueError("--scores must be a JSON object")
        return StaticAdvisoryClient(scores)
    return create_advisory_client(config)


def format_graph(analysis: GraphAnalysis) -> List[str]:
    if not analysis.is_valid:
        return [f"Graph analysis unavailable: {analysis.error_message}"]

    lines = ["Component Health:"]
    for component, health in sorted(analysis.component_health.items(), key=lambda i: i[1]):
        lines.append(f"  {component:<30} {health:6.1%}")

    lines.append("")
    lines.append("Relationships:")
    for rel in analysis.relationships:
        lines.append(
            f"  {rel.source} -> {rel.target} ({rel.type.value}, "
            f"strength {rel.strength:.2f})"
        )

    propagation = analysis.propagation
    lines.append("")
    lines.append(f"Affected Components: {', '.join(propagation.affected_components) or 'none'}")
    for path in propagation.propagation_paths:
        lines.append(f"  path: {' -> '.join(path)}")
    return lines


def format_risk(risk: RiskAssessment) -> List[str]:
    lines = [
        f"Risk Level: {risk.risk_level.label} (confidence {risk.confidence:.0%})",
        "Potential Issues:",
    ]
    lines.extend(f"  - {issue}" for issue in risk.potential_issues)
    lines.append("Mitigation Steps:")
    lines.extend(f"  - {step}" for step in risk.mitigation_steps)
    return lines


def format_recommendations(analysis: RemediationAnalysis) -> List[str]:
    if not analysis.is_valid:
        return [f"No recommendation: {analysis.error_message}"]
    lines = ["Recommended Strategies:"]
    for rank, rec in enumerate(analysis.recommendations, 1):
        lines.append(
            f"  {rank}. {rec.strategy_name} v{rec.version} "
            f"confidence {rec.confidence:.2f} (priority {rec.priority})"
        )
        lines.append(f"     {rec.reasoning}")
    lines.extend(f"  warning: {w}" for w in analysis.warnings)
    return lines


def handle_analyze(args: argparse.Namespace) -> int:
    """
    Handle the analyze subcommand.

    Returns:
        Exit code (0 for success, non-zero for failure)
    """
    try:
        config = HealConfig.load(args.config)
        config.validate()
        context = load_context(Path(args.context))
        registry = load_strategies(Path(args.strategies)) if args.strategies else None
        advisory = _advisory_client(args, config) if registry is not None else None
    except (ValueError, RegistryError) as e:
        logger.error(f"{e}")
        return 1

    graph = GraphAnalyzer().analyze(context)
    risk = RiskAssessor().assess_context(context)

    recommendation = None
    if registry is not None:
        analyzer = RemediationAnalyzer(registry, advisory, config=config)
        recommendation = asyncio.run(analyzer.analyze(context))

    if args.json:
        output = {
            "correlation_id": context.correlation_id,
            "graph_analysis": graph.to_dict(),
            "risk_assessment": risk.to_dict(),
            "recommendations": recommendation.to_dict() if recommendation else None,
        }
        print(json.dumps(output, indent=2, default=str))
    else:
        lines = [
            f"Error: {context.error_type} in {context.source_component or 'unknown'} "
            f"(severity {context.severity.label}, scope {context.impact_scope.value})",
            "",
        ]
        lines.extend(format_graph(graph))
        lines.append("")
        lines.extend(format_risk(risk))
        if recommendation is not None:
            lines.append("")
            lines.extend(format_recommendations(recommendation))
        print("\n".join(lines))

    if recommendation is not None and not recommendation.is_valid:
        return 2
    return 0


def handle_risk(args: argparse.Namespace) -> int:
    """Handle the risk subcommand."""
    try:
        severity = Severity.parse(args.severity)
        scope = ImpactScope.parse(args.scope)
    except ValueError as e:
        logger.error(f"{e}")
        return 1

    risk = RiskAssessor().assess(severity, scope)
    if args.json:
        print(json.dumps(risk.to_dict(), indent=2))
    else:
        print(f"Severity {severity.label} / scope {scope.value}")
        print("\n".join(format_risk(risk)))
    return 0


def handle_version(args: argparse.Namespace) -> int:
    """Handle the version subcommand."""
    print(f"ADAPT-Heal version {__version__}")
    print("Adaptive Diagnostic Agent for Proactive Troubleshooting - Self-Healing Orchestrator")

    if args.verbose:
        print(f"\nPython: {sys.version}")
        config = HealConfig.load(args.config)
        print(f"Advisory Provider: {config.advisory_provider}")
        print(f"Advisory Model: {config.advisory_model or '(default)'}")

    return 0


def handle_config(args: argparse.Namespace) -> int:
    """Handle the config subcommand."""
    config = HealConfig.load(args.config)

    if args.action == "validate":
        try:
            config.validate()
        except ValueError as e:
            print(f"ERROR: Configuration validation failed - {e}")
            return 1
        print("✓ Configuration is valid")
        return 0

    print("Current ADAPT-Heal Configuration:")
    print(f"  Advisory Provider: {config.advisory_provider}")
    print(f"  Action Timeout: {config.action_timeout_seconds}s")
    print(f"  Max Retries: {config.max_retries}")
    print(f"  Rollback: {config.rollback_order if config.enable_rollback else 'disabled'}")
    print(f"  Approval Risk Level: {config.approval_risk_level}")

    if args.verbose:
        print("\nFull configuration:")
        print(json.dumps(vars(config), indent=2, default=str))
    return 0


def create_parser() -> argparse.ArgumentParser:
    """
    Create and configure the argument parser with subcommands.

    Returns:
        Configured ArgumentParser
    """
    parser = argparse.ArgumentParser(
        prog="adapt-heal",
        description="ADAPT-Heal: automated remediation for runtime errors",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Analyze an error context
  %(prog)s analyze incident.json

  # Rank strategies with fixed advisory scores
  %(prog)s analyze incident.yaml --strategies strategies.yaml --scores '{"Monitor": 0.8}'

  # Look up the risk table
  %(prog)s risk --severity high --scope global

Environment Variables:
  ADAPT_HEAL_ADVISORY_PROVIDER   Advisory provider (openai, anthropic, none)
  ADAPT_HEAL_ADVISORY_MODEL      Model to use
  OPENAI_API_KEY                 OpenAI API key (if using openai provider)
  ANTHROPIC_API_KEY              Anthropic API key (if using anthropic provider)
        """
    )

    # Global flags (available to all subcommands)
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose logging"
    )
    parser.add_argument(
        "--quiet", "-q",
        action="store_true",
        help="Only show warnings and errors"
    )
    parser.add_argument(
        "--config",
        metavar="PATH",
        help="Path to configuration file"
    )

    subparsers = parser.add_subparsers(
        dest="subcommand",
        help="Available subcommands"
    )

    # ========================================
    # ANALYZE subcommand
    # ========================================
    analyze_parser = subparsers.add_parser(
        "analyze",
        help="Analyze an error context",
    )
    analyze_parser.add_argument(
        "context",
        help="Path to error context (JSON or YAML)"
    )
    analyze_parser.add_argument(
        "--strategies", "-s",
        metavar="PATH",
        help="Strategies file (JSON or YAML); enables strategy ranking"
    )
    analyze_parser.add_argument(
        "--scores",
        metavar="JSON",
        help="Fixed advisory scores as a JSON object instead of the configured provider"
    )
    analyze_parser.add_argument(
        "--json",
        action="store_true",
        help="Print JSON instead of text"
    )
    analyze_parser.set_defaults(func=handle_analyze)

    # ========================================
    # RISK subcommand
    # ========================================
    risk_parser = subparsers.add_parser(
        "risk",
        help="Show the risk assessment for a severity and impact scope",
    )
    risk_parser.add_argument(
        "--severity",
        required=True,
        help="none, low, medium, high or critical"
    )
    risk_parser.add_argument(
        "--scope",
        default="component",
        help="local, component, service, system or global (default: component)"
    )
    risk_parser.add_argument(
        "--json",
        action="store_true",
        help="Print JSON instead of text"
    )
    risk_parser.set_defaults(func=handle_risk)

    # ========================================
    # VERSION subcommand
    # ========================================
    version_parser = subparsers.add_parser(
        "version",
        help="Show version information"
    )
    version_parser.set_defaults(func=handle_version)

    # ========================================
    # CONFIG subcommand
    # ========================================
    config_parser = subparsers.add_parser(
        "config",
        help="Show or validate configuration",
    )
    config_parser.add_argument(
        "action",
        nargs="?",
        choices=["show", "validate"],
        default="show",
        help="Config action (default: show)"
    )
    config_parser.set_defaults(func=handle_config)

    return parser


def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point for the CLI."""
    parser = create_parser()
    args = parser.parse_args(argv)

    configure_cli_logging(verbose=args.verbose, quiet=args.quiet)

    if not hasattr(args, "func"):
        parser.print_help()
        sys.exit(1)

    sys.exit(args.func(args))


if __name__ == "__main__":
    main()
