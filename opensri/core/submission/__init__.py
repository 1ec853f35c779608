"""Tax authority submission: state machine and retry scheduling."""

from .coordinator import PollSummary, SubmissionCoordinator
from .scheduler import InMemoryRetryScheduler, RetryScheduler, ThreadingRetryScheduler

__all__ = [
    "InMemoryRetryScheduler",
    "PollSummary",
    "RetryScheduler",
    "SubmissionCoordinator",
    "ThreadingRetryScheduler",
]
