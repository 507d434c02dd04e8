"""Bounded-concurrency dispatch engine: job queue, result aggregation, progress."""
