"""
Pydantic data models shared by services and the API.
"""
from src.codeleads.models.jobs import AggregateProgress, JobEventView, JobStatus, RunStatus
from src.codeleads.models.location import DetectionResult, LocationCandidate

__all__ = [
    "AggregateProgress",
    "DetectionResult",
    "JobEventView",
    "JobStatus",
    "LocationCandidate",
    "RunStatus",
]
