"""
Feature slices of the reminder core.

Each subpackage keeps its logic co-located: analytics (scoring), scheduling
(decisions and queues) and pipeline (per-attempt stage execution).
"""
