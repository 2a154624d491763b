"""
Rent Kernel

Rent-prepayment allocation and invoice reconciliation with:
- At-most-once allocation per payment (persisted idempotency markers)
- Atomic multi-month apply as a single unit of work
- Tolerance-based amount matching and duplicate detection
- Self-healing lease paid-until / next-due pointers
"""

__version__ = "0.1.0"
