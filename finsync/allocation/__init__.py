"""Company allocation of transactions."""

from finsync.allocation.policy import AllocationPolicy, validate_splits

__all__ = [
    "AllocationPolicy",
    "validate_splits",
]
