"""
Application constants.
Centralized location for all constant values used across the application.
"""

from enum import StrEnum


class JobState(StrEnum):
    """
    Job lifecycle states.

    State transitions:
    - WAITING -> ACTIVE (claimed by a worker, lease acquired)
    - ACTIVE -> COMPLETED (handler succeeded)
    - ACTIVE -> WAITING (handler failed, attempts remain; re-queued after backoff)
    - ACTIVE -> FAILED (handler failed, attempts exhausted)
    - ACTIVE -> WAITING (lease expired - crash recovery)
    """

    WAITING = "waiting"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


class BackoffType(StrEnum):
    """Retry delay strategies."""

    FIXED = "fixed"
    EXPONENTIAL = "exponential"


class ShutdownState(StrEnum):
    """Shutdown coordinator states, in order."""

    RUNNING = "running"
    DRAINING = "draining"
    DISCONNECTED = "disconnected"
    EXITED = "exited"


# Queue names
CHECK_SOURCE_QUEUE = "check-source"
NOTIFICATION_QUEUE = "notifications"

# Default values
DEFAULT_LEASE_DURATION_SECONDS = 30
DEFAULT_SCHEDULER_INTERVAL_SECONDS = 5 * 60
DEFAULT_BACKOFF_MAX_DELAY_MS = 60 * 60 * 1000

# Event types
EVENT_JOB_COMPLETED = "completed"
EVENT_JOB_FAILED = "failed"

# Metrics names
METRIC_JOBS_ENQUEUED = "jobs_enqueued_total"
METRIC_JOBS_CLAIMED = "jobs_claimed_total"
METRIC_JOBS_COMPLETED = "jobs_completed_total"
METRIC_JOBS_ACTIVE = "jobs_active"
METRIC_JOB_DURATION = "job_duration_seconds"
METRIC_LEASE_EXPIRED = "lease_expired_total"
METRIC_JOBS_EVICTED = "jobs_evicted_total"
METRIC_SCHEDULER_CYCLES = "scheduler_cycles_total"

# Trace span names
SPAN_ENQUEUE_JOB = "enqueue_job"
SPAN_EXECUTE_JOB = "execute_job"
SPAN_SCHEDULER_CYCLE = "scheduler_cycle"
