"""State/store layer.

This package is the single source of truth for how snapshots and
change-feed events are merged into the last-known state of one tracked
order.
"""
