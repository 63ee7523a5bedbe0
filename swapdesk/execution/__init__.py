"""Order execution: retry policy, pipeline and queue worker."""

from .retry import RetryPolicy
from .pipeline import ExecutionPipeline
from .worker import ExecutionWorker, JobOutcome

__all__ = [
    "RetryPolicy",
    "ExecutionPipeline",
    "ExecutionWorker",
    "JobOutcome",
]
