"""Extraction pipeline: direct orchestration, batch coordination and batch monitoring."""

from .batch_coordinator import BatchCoordinator, BatchCreation, BatchProcessing
from .batch_monitor import BatchMonitor, MonitorCycle
from .orchestrator import ExtractionOrchestrator, summarize_results

__all__ = [
    "BatchCoordinator",
    "BatchCreation",
    "BatchMonitor",
    "BatchProcessing",
    "ExtractionOrchestrator",
    "MonitorCycle",
    "summarize_results",
]
