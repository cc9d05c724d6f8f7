"""
Worker module.
Contains the worker engine, handler registry, and start-rate limiter.
"""

from jobengine.worker.engine import Worker
from jobengine.worker.handlers import (
    JobHandler,
    execute_handler,
    get_handler,
    register_handler,
)
from jobengine.worker.rate_limit import RateLimiter

__all__ = [
    "Worker",
    "JobHandler",
    "RateLimiter",
    "register_handler",
    "get_handler",
    "execute_handler",
]
