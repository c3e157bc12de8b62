"""Scheduling utilities for recurring marketplace sweeps."""

from .config import JobDefinition, ScheduleConfig, load_job_definitions
from .runner import MarketplaceJobScheduler

__all__ = ["JobDefinition", "MarketplaceJobScheduler", "ScheduleConfig", "load_job_definitions"]
