"""
Scheduler module.
Contains the periodic scheduler loop and the lease reaper.
"""

from jobengine.scheduler.loop import ProductionRoutine, SchedulerLoop
from jobengine.scheduler.reaper import Reaper

__all__ = ["SchedulerLoop", "ProductionRoutine", "Reaper"]
