"""
Debt Collections Core

Collections task lifecycle and payment-plan accounting engine with
Decimal money math, hash-chained audit trails and optimistic concurrency.
"""

__version__ = "1.0.0"
