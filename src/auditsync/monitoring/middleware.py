"""
Stage timing helpers.

Wraps a pipeline stage so its duration reaches both the performance log
and, when a collector is present, the stage histogram.
"""

import time
from contextlib import asynccontextmanager
from typing import Optional

from ..core.logging import log_performance
from .service import MetricsCollector


@asynccontextmanager
async def time_stage(stage: str, metrics: Optional[MetricsCollector] = None):
    """
    Context manager for timing a pipeline stage.

    Usage:
        async with time_stage('persist', metrics):
            await repository.upsert(event, partition, offset)
    """
    start_time = time.perf_counter()

    try:
        yield
    except Exception as e:
        duration = time.perf_counter() - start_time
        log_performance(f"stage_{stage}", duration * 1000, success=False, error=str(e))
        raise

    duration = time.perf_counter() - start_time
    if metrics:
        metrics.record_stage_duration(stage, duration)
    log_performance(f"stage_{stage}", duration * 1000)
