"""
Append-only job and run timelines.
"""
from src.codeleads.events.event_log import EventTimeline, JobEventLog

__all__ = ["EventTimeline", "JobEventLog"]
