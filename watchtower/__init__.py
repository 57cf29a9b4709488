"""
WatchTower - continuous monitoring engine.

Schedules monitors, probes their targets, evaluates alert conditions
against current and previous results, and fans incidents out to
notification channels.
"""

__version__ = "0.1.0"
