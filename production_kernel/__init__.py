"""
Production Kernel

Tracks production jobs through manufacturing stages and deducts the raw
materials a job consumes from the inventory ledger exactly once:
- Idempotent stage transitions with an append-only stage history
- BOM text parsing and per-size material usage resolution
- Single-flight stock deduction guarded by store constraints
- Append-only stock movements with an atomic on-hand counter
"""

__version__ = "0.1.0"
