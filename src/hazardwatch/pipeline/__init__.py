"""
Scheduling of collector runs.
"""

from .scheduler import ScheduledJob, Scheduler

__all__ = ["ScheduledJob", "Scheduler"]
