"""Durable submission queue."""

from .submission import SubmissionQueue, Job, JobState

__all__ = [
    "SubmissionQueue",
    "Job",
    "JobState",
]
