"""
Scheduling decisions, per-user queues, rate limits and adaptive timing.
"""
