"""
Per-attempt pipeline execution: scheduling recheck, content, validation, delivery.
"""
