from typing import Iterable, List, Set

from lending.schemas import BorrowStatus, ItemRecord

# Statuses are compared with ==, not hashed: record fields hold the plain
# string values.
ACTIVE_STATUSES = (BorrowStatus.APPROVED, BorrowStatus.RETURNING)
OPEN_STATUSES = (BorrowStatus.PENDING, BorrowStatus.APPROVED, BorrowStatus.RETURNING)


def is_active(borrow) -> bool:
    return borrow.status in ACTIVE_STATUSES


def is_open(borrow) -> bool:
    return borrow.status in OPEN_STATUSES


def lent_item_ids(borrows: Iterable) -> Set[str]:
    """Ids of items that some active borrow currently holds."""
    return {borrow.item_id for borrow in borrows if is_active(borrow)}


def has_open_borrow(item_id: str, borrows: Iterable) -> bool:
    return any(borrow.item_id == item_id and is_open(borrow) for borrow in borrows)


def apply_availability(items: List[ItemRecord], borrows: Iterable) -> List[ItemRecord]:
    lent = lent_item_ids(borrows)
    updated = []
    for item in items:
        item = item.model_copy()
        item.available = item.id not in lent
        updated.append(item)
    return updated


def find_violations(items: Iterable[ItemRecord], borrows: Iterable) -> List[str]:
    """Item ids whose stored flag disagrees with the borrows collection."""
    lent = lent_item_ids(borrows)
    return [item.id for item in items if item.available == (item.id in lent)]
