"""changegate - decide which CI job groups run for a change and gate on their results."""

from changegate.aggregator import aggregate, join_outcomes, parse_outcomes
from changegate.classifier import categorize, classify, classify_paths
from changegate.types import (
    Category,
    ChangeSet,
    ClassificationResult,
    GateDecision,
    JobOutcome,
    PathRule,
)

__version__ = "0.1.0"

__all__ = [
    "Category",
    "ChangeSet",
    "ClassificationResult",
    "GateDecision",
    "JobOutcome",
    "PathRule",
    "aggregate",
    "categorize",
    "classify",
    "classify_paths",
    "join_outcomes",
    "parse_outcomes",
]
