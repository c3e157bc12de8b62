"""Recurring job entrypoints for marketplace reconciliation sweeps."""

__all__ = [
    "offers",
    "orders",
    "payments",
    "payouts",
    "penalties",
]
