from .inventory import Item
from .salespeople import Salesperson
from .allocations import (
    Allocation,
    ALLOCATION_STATUS_ALLOCATED,
    ALLOCATION_STATUS_SOLD,
    ALLOCATION_STATUS_RETURNED,
    ALLOCATION_STATUSES,
)

__all__ = [
    'Item',
    'Salesperson',
    'Allocation',
    'ALLOCATION_STATUS_ALLOCATED', 'ALLOCATION_STATUS_SOLD', 'ALLOCATION_STATUS_RETURNED',
    'ALLOCATION_STATUSES',
]
