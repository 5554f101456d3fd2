"""Risk scoring and remediation planning."""

from .planner import DEFAULT_ORDERING_RULES, OrderingRule, TaskPlanner, rules_from_config
from .risk import RiskAssessor, RiskScore

__all__ = [
    "DEFAULT_ORDERING_RULES",
    "OrderingRule",
    "RiskAssessor",
    "RiskScore",
    "TaskPlanner",
    "rules_from_config",
]
