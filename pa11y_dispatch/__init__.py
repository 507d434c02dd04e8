"""Dispatch pa11y accessibility audits to remote workers and report the results."""

__version__ = "0.3.0"
