"""
Benchmark harness for the cadence scheduler.

This package runs plans of synthetic units of work through the scheduler,
writes per-case measurement CSVs and a JSON manifest, and renders charts
summarising response times per thread and over the course of each run.
"""

from .main import main

__all__ = ["main"]
