"""
Nudge - reminder decision core for shared work trackers.

Scores tracked work items for staleness, deadline proximity and assignee
workload, decides whether and when a reminder should be produced, and drives
each accepted reminder through content, validation and delivery.
"""

__version__ = "0.1.0"
