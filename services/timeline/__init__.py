"""
Timeline Service
================
Frame scheduling for the narrated composition.
"""

from .scheduler import SceneSchedule, TimelineScheduler, TimingSource, ms_to_frames

__all__ = ["SceneSchedule", "TimelineScheduler", "TimingSource", "ms_to_frames"]
