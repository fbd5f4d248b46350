"""
FinSync - Source Package

Aggregates bank, card, payment, spreadsheet, accounting and loan-registry
data into one ledger, and allocates every transaction to a business entity.

DESIGN PRINCIPLES:
1. One canonical model, many providers
2. Re-syncing is always safe (idempotent upserts keyed by provider ids)
3. One provider failing never stops the others
4. Allocation invariants fail loudly
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "FinSync Team"
