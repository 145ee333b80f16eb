"""Domain Events: batch execution and API resilience."""
