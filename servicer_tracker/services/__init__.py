"""
Service layer for the servicer tracker.

This module contains:
- Task graph reads and dashboard aggregates (task_service)
- Task, customer and sub-category writes (update_service)
- Daily servicer reports (report_service)
- Pure aggregation functions (aggregation)
- Write debouncing and submission locks (write_coalescer)
"""

from . import aggregation
from . import report_service
from . import task_service
from . import update_service
from . import write_coalescer

__all__ = [
    'aggregation',
    'report_service',
    'task_service',
    'update_service',
    'write_coalescer',
]
