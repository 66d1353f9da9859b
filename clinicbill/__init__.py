"""Invoice aggregation for a clinic's attended appointments."""

__version__ = "0.1.0"
