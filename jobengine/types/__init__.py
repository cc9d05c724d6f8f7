"""
Type definitions for the job engine.
Contains job, option, and event models shared by stores, queues, and workers.
"""

from jobengine.types.events import JobEvent
from jobengine.types.job import (
    BackoffPolicy,
    EnqueueOptions,
    JobContext,
    JobHandle,
    JobOptions,
    JobRecord,
    JobResult,
    RateLimit,
    RetentionPolicy,
    RetentionRule,
    WorkerConfig,
)

__all__ = [
    # Job types
    "BackoffPolicy",
    "RetentionRule",
    "RetentionPolicy",
    "JobOptions",
    "EnqueueOptions",
    "RateLimit",
    "WorkerConfig",
    "JobResult",
    "JobRecord",
    "JobHandle",
    "JobContext",
    # Event types
    "JobEvent",
]
