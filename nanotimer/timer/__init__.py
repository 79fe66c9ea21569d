"""
NanoTimer - timeout/interval multiplexer over one timing engine
"""

from .core import NanoTimer, TimerEntry, validate_timer_args

__all__ = ["NanoTimer", "TimerEntry", "validate_timer_args"]
