"""
Background Job Engine

A durable work queue with concurrency- and rate-limited workers, a periodic
scheduler that injects new work, and an orderly shutdown sequence that never
drops in-flight jobs.
"""

__version__ = "1.0.0"
