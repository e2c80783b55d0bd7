"""Core logic for candle aggregation, indicators, and signal evaluation.

This package contains pure business logic with no I/O dependencies
(no database, HTTP, or notification access). The live service in
``sentinel`` wires it to the upstream providers and the candle store.
"""
