import logging
from typing import List, Optional

import bcrypt

from lending import inventory, schemas
from lending.exceptions import (
    DuplicateUsernameError,
    MissingFieldError,
    PermissionDeniedError,
    UserNotFoundError,
)
from lending.schemas import BorrowStatus
from lending.storage import RecordStore, find_by_id, index_by_id, new_id

# Set up logging
logger = logging.getLogger(__name__)


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))


def register_user(store: RecordStore, user: schemas.UserCreate) -> schemas.UserRecord:
    username = user.username.strip()
    if not username:
        raise MissingFieldError("username")
    if not user.password:
        raise MissingFieldError("password")
    password_hash = hash_password(user.password)

    with store.transaction() as tx:
        users = tx.read("users")
        if any(existing.username == username for existing in users):
            raise DuplicateUsernameError(username)
        db_user = schemas.UserRecord(
            id=new_id("u_"),
            username=username,
            password_hash=password_hash,
            # first registered user administers the rest
            is_admin=len(users) == 0,
        )
        tx.write("users", users + [db_user])

    logger.info(f"Registered user {db_user.username} (admin={db_user.is_admin})")
    return db_user


def get_user(store: RecordStore, user_id: str) -> Optional[schemas.UserRecord]:
    return find_by_id(store.read("users"), user_id)


def get_item(store: RecordStore, item_id: str) -> Optional[schemas.ItemRecord]:
    return find_by_id(store.read("items"), item_id)


def add_item(
    store: RecordStore, actor: schemas.Actor, item: schemas.ItemCreate
) -> schemas.ItemRecord:
    name = item.name.strip()
    if not name:
        raise MissingFieldError("name")

    owner_id = actor.user_id
    if item.owner_id and item.owner_id != actor.user_id:
        if not actor.is_admin:
            raise PermissionDeniedError(actor.user_id, "add items for other users")
        owner_id = item.owner_id

    with store.transaction() as tx:
        if find_by_id(tx.read("users"), owner_id) is None:
            raise UserNotFoundError(owner_id)
        items = tx.read("items")
        db_item = schemas.ItemRecord(
            id=new_id("i_"),
            owner_id=owner_id,
            name=name,
            description=item.description.strip(),
            available=True,
        )
        items = inventory.apply_availability(items + [db_item], tx.read("borrows"))
        tx.write("items", items)

    logger.info(f"Added item {db_item.id} for owner {owner_id}")
    return db_item


def _snapshot(store: RecordStore):
    with store.transaction() as tx:
        return tx.read("users"), tx.read("items"), tx.read("borrows")


def list_owned_items(store: RecordStore, owner_id: str) -> List[schemas.OwnedItemView]:
    users, items, borrows = _snapshot(store)
    users_by_id = index_by_id(users)
    holders = {b.item_id: b.borrower_id for b in borrows if inventory.is_active(b)}

    views = []
    for item in items:
        if item.owner_id != owner_id:
            continue
        borrower = users_by_id.get(holders.get(item.id))
        views.append(
            schemas.OwnedItemView(
                item=item,
                borrower_username=borrower.username if borrower else None,
            )
        )
    return views


def list_borrower_loans(store: RecordStore, borrower_id: str) -> List[schemas.LoanView]:
    users, items, borrows = _snapshot(store)
    users_by_id, items_by_id = index_by_id(users), index_by_id(items)

    views = []
    for borrow in borrows:
        if borrow.borrower_id != borrower_id or borrow.status == BorrowStatus.RETURNED:
            continue
        item = items_by_id.get(borrow.item_id)
        owner = users_by_id.get(borrow.owner_id)
        if item is None or owner is None:
            continue
        views.append(
            schemas.LoanView(
                borrow=borrow, item_name=item.name, counterpart_username=owner.username
            )
        )
    return views


def list_owner_requests(store: RecordStore, owner_id: str) -> List[schemas.LoanView]:
    users, items, borrows = _snapshot(store)
    users_by_id, items_by_id = index_by_id(users), index_by_id(items)

    views = []
    for borrow in borrows:
        if borrow.owner_id != owner_id or borrow.status == BorrowStatus.RETURNED:
            continue
        item = items_by_id.get(borrow.item_id)
        borrower = users_by_id.get(borrow.borrower_id)
        if item is None or borrower is None:
            continue
        views.append(
            schemas.LoanView(
                borrow=borrow,
                item_name=item.name,
                counterpart_username=borrower.username,
            )
        )
    return views


def list_borrowable_items(
    store: RecordStore, viewer_id: str
) -> List[schemas.BorrowableItemView]:
    users, items, borrows = _snapshot(store)
    users_by_id = index_by_id(users)
    requested = {
        b.item_id
        for b in borrows
        if b.borrower_id == viewer_id
        and b.status in (BorrowStatus.PENDING, BorrowStatus.APPROVED)
    }

    views = []
    for item in items:
        if item.owner_id == viewer_id or not item.available:
            continue
        owner = users_by_id.get(item.owner_id)
        if owner is None:
            continue
        views.append(
            schemas.BorrowableItemView(
                item=item,
                owner_username=owner.username,
                already_requested=item.id in requested,
            )
        )
    return views


def count_pending_actions(store: RecordStore, owner_id: str) -> int:
    return sum(
        1
        for b in store.read("borrows")
        if b.owner_id == owner_id
        and b.status in (BorrowStatus.PENDING, BorrowStatus.RETURNING)
    )
