"""Recurring job entrypoints for loyalty housekeeping."""

__all__ = [
    "loyalty",
]
