"""Urgency-scoring analyzers: staleness, deadline proximity and workload capacity."""

from nudge.features.analytics.deadline import AttentionBuckets, DeadlineAnalyzer
from nudge.features.analytics.staleness import StalenessAnalyzer
from nudge.features.analytics.urgency import combine, derive_priority
from nudge.features.analytics.workload import WorkloadAnalyzer

__all__ = [
    "AttentionBuckets",
    "DeadlineAnalyzer",
    "StalenessAnalyzer",
    "WorkloadAnalyzer",
    "combine",
    "derive_priority",
]
