"""
Shared constants for ADAPT-Heal.

Scoring weights are empirical. Changing them changes every ranking, so
treat them as fixed.
"""

# Confidence scoring
GRAPH_HEALTH_WEIGHT = 0.4
ADVISORY_SCORE_WEIGHT = 0.6
MIN_STRATEGY_PRIORITY = 1
MAX_STRATEGY_PRIORITY = 5
PRIORITY_SCALE_BASE = 6

# Component health
RESPONSE_TIME_NORMALIZER_MS = 1000.0
ERROR_SOURCE_HEALTH_FACTOR = 0.5

# Relationship strength
BASE_RELATIONSHIP_STRENGTH = 0.5
PROPAGATION_EDGE_BONUS = 0.3
ERROR_RATE_SIMILARITY_WEIGHT = 0.2

# Error propagation severity
PATH_LENGTH_DECAY = 0.2
PROPAGATION_ERROR_RATE_WEIGHT = 0.4
PROPAGATION_RESPONSE_TIME_WEIGHT = 0.3
PROPAGATION_SOURCE_BONUS = 0.3
PROPAGATION_PATH_SEVERITY_THRESHOLD = 0.7

# Metric keys read from ErrorContext.component_metrics
METRIC_ERROR_RATE = "error_rate"
METRIC_RESPONSE_TIME = "response_time_ms"
METRIC_RESOURCE_UTILIZATION = "resource_utilization"

# Risk assessment confidence (0-100 scale)
RISK_CONFIDENCE_BASE = 50
RISK_CONFIDENCE_DESCRIPTION = 10
RISK_CONFIDENCE_VALIDATION = 15
RISK_CONFIDENCE_CONTEXT = 15
RISK_CONFIDENCE_CONTEXT_FIELD = 5
RISK_CONFIDENCE_MAX = 100

# Execution defaults
DEFAULT_ACTION_TIMEOUT_SECONDS = 300
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY_SECONDS = 5.0
DEFAULT_PLAN_TIMEOUT_SECONDS = 3600
DEFAULT_MAX_STRATEGIES_PER_PLAN = 1
DEFAULT_EXECUTION_HISTORY_LIMIT = 1000

# Advisory model defaults
DEFAULT_ADVISORY_TIMEOUT_SECONDS = 30
DEFAULT_ADVISORY_MAX_RETRIES = 2
DEFAULT_ADVISORY_FAILURE_THRESHOLD = 5
DEFAULT_ADVISORY_RECOVERY_TIMEOUT_SECONDS = 60.0
DEFAULT_ADVISORY_MAX_TOKENS = 1500
DEFAULT_ADVISORY_TEMPERATURE = 0.2

VALID_ADVISORY_PROVIDERS = ("none", "anthropic", "openai")
VALID_ROLLBACK_ORDERS = ("forward", "reverse")
VALID_RISK_LEVELS = ("none", "low", "medium", "high", "critical")
DEFAULT_APPROVAL_RISK_LEVEL = "critical"
