"""Scheduler for recorded-stream post-processing workers."""

__version__ = "0.1.0"
