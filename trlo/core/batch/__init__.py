"""Batch engine: loading, parsing, resolution, scheduling and aggregation."""
