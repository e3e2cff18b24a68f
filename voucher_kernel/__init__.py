"""
Voucher Kernel

Server side of the voucher tools:
- Append-only posted transactions (never mutated in place)
- Atomic reversal + correction of a posted transaction
- Per-record serialisation of corrections
- Outbox-backed domain events
- Cashbox persistence
"""

__version__ = "0.1.0"
