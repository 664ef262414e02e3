from datetime import datetime

from lending import inventory
from lending.schemas import BorrowRecord, ItemRecord


def make_borrow(item_id, status):
    return BorrowRecord(
        id=f"b_{item_id}_{status}",
        item_id=item_id,
        borrower_id="u_borrower",
        owner_id="u_owner",
        status=status,
        request_date=datetime(2024, 5, 1),
    )


def make_items():
    return [
        ItemRecord(id=item_id, owner_id="u_owner", name=item_id)
        for item_id in ("i_1", "i_2", "i_3", "i_4")
    ]


def test_only_active_borrows_make_items_unavailable():
    borrows = [
        make_borrow("i_1", "pending"),
        make_borrow("i_2", "approved"),
        make_borrow("i_3", "returning"),
        make_borrow("i_4", "returned"),
    ]

    items = inventory.apply_availability(make_items(), borrows)

    assert {item.id: item.available for item in items} == {
        "i_1": True,
        "i_2": False,
        "i_3": False,
        "i_4": True,
    }


def test_apply_availability_does_not_mutate_input():
    items = make_items()

    inventory.apply_availability(items, [make_borrow("i_1", "approved")])

    assert all(item.available for item in items)


def test_has_open_borrow_counts_pending():
    borrows = [make_borrow("i_1", "pending"), make_borrow("i_2", "returned")]

    assert inventory.has_open_borrow("i_1", borrows)
    assert not inventory.has_open_borrow("i_2", borrows)
    assert not inventory.has_open_borrow("i_3", borrows)


def test_find_violations():
    items = make_items()
    items[0].available = False
    borrows = [make_borrow("i_2", "approved")]

    assert inventory.find_violations(items, borrows) == ["i_1", "i_2"]
    assert inventory.find_violations(inventory.apply_availability(items, borrows), borrows) == []
