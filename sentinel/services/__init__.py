"""Business services."""

from sentinel.services.backfill_queue import BackfillQueue, DrainResult
from sentinel.services.candle_processor import CandleProcessor
from sentinel.services.discovery import DiscoveryResult, DiscoveryService
from sentinel.services.maintenance import MaintenanceService, PruneThresholds, Pruner
from sentinel.services.price_sampler import PriceSampler
from sentinel.services.reconciler import GapReconciler
from sentinel.services.reports import ReportService
from sentinel.services.scheduler import PeriodicTask, Scheduler

__all__ = [
    "BackfillQueue",
    "DrainResult",
    "CandleProcessor",
    "DiscoveryResult",
    "DiscoveryService",
    "MaintenanceService",
    "PruneThresholds",
    "Pruner",
    "PriceSampler",
    "GapReconciler",
    "ReportService",
    "PeriodicTask",
    "Scheduler",
]
