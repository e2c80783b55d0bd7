"""Live candle aggregation, signal evaluation, and backfill service."""

__version__ = "0.2.0"
