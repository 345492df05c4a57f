"""
BLOOMFIT Timers Module
"""

from .scheduler import (
    Scheduler,
    ScheduledCall,
    AsyncioScheduler,
    TimerGroup,
    TimerGroupClosed,
)

__all__ = [
    'Scheduler',
    'ScheduledCall',
    'AsyncioScheduler',
    'TimerGroup',
    'TimerGroupClosed',
]
