"""Borrow record state machine.

    pending --approve--> approved --mark_returning--> returning --approve--> returned
    pending --cancel--> (deleted)
    returning --cancel--> approved

Every transition is one transaction over ``items`` and ``borrows``: the
borrow record changes and item availability is recomputed from the new
borrows before anything is committed. Proof images are written before the
transaction starts and deleted only after it commits.
"""
import logging
from datetime import datetime, timezone
from typing import Callable, NamedTuple, Optional, Tuple

from lending import inventory
from lending.attachments import AttachmentManager
from lending.exceptions import (
    BorrowNotFoundError,
    InvalidAttachmentError,
    InvalidTransitionError,
    ItemNotAvailableError,
    ItemNotFoundError,
    LendingException,
    MissingFieldError,
    PermissionDeniedError,
    SelfLoanError,
    StorageError,
)
from lending.schemas import (
    Actor,
    BorrowRecord,
    BorrowStatus,
    LifecycleResult,
    ProofImage,
)
from lending.storage import RecordStore, find_by_id, new_id

logger = logging.getLogger(__name__)


class _Change(NamedTuple):
    borrows: list
    borrow: BorrowRecord
    deleted: bool = False
    orphans: Tuple[Optional[str], ...] = ()


class BorrowLifecycle:
    def __init__(
        self,
        store: RecordStore,
        attachments: AttachmentManager,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.attachments = attachments
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def request_borrow(
        self, actor: Actor, item_id: str, proof: Optional[ProofImage]
    ) -> LifecycleResult:
        if proof is None:
            return self._reject("request", MissingFieldError("proof_image"))
        try:
            proof_ref = self.attachments.store(proof.content, proof.media_type)
        except InvalidAttachmentError as e:
            return self._reject("request", e)

        def change(items, borrows):
            item = find_by_id(items, item_id)
            if item is None:
                raise ItemNotFoundError(item_id)
            if item.owner_id == actor.user_id:
                raise SelfLoanError(item_id)
            # one open borrow per item, pending included
            if not item.available or inventory.has_open_borrow(item_id, borrows):
                raise ItemNotAvailableError(item_id)

            borrow = BorrowRecord(
                id=new_id("b_"),
                item_id=item.id,
                borrower_id=actor.user_id,
                owner_id=item.owner_id,
                status=BorrowStatus.PENDING,
                request_date=self.clock(),
                proof_image=proof_ref,
            )
            return _Change(borrows + [borrow], borrow)

        return self._run("request", change, fresh_ref=proof_ref)

    def approve(self, actor: Actor, borrow_id: str) -> LifecycleResult:
        """Approve a pending request, or confirm a pending return."""

        def change(items, borrows):
            borrow = _locate(borrows, borrow_id)
            if not (actor.is_admin or actor.user_id == borrow.owner_id):
                raise PermissionDeniedError(actor.user_id, f"approve {borrow_id}")

            if borrow.status == BorrowStatus.PENDING:
                if find_by_id(items, borrow.item_id) is None:
                    raise ItemNotFoundError(borrow.item_id)
                if borrow.item_id in inventory.lent_item_ids(borrows):
                    raise ItemNotAvailableError(borrow.item_id)
                borrow.status = BorrowStatus.APPROVED
                return _Change(borrows, borrow)

            if borrow.status == BorrowStatus.RETURNING:
                orphans = (borrow.proof_image, borrow.return_proof_image)
                borrow.status = BorrowStatus.RETURNED
                borrow.proof_image = None
                borrow.return_proof_image = None
                return _Change(borrows, borrow, orphans=orphans)

            raise InvalidTransitionError(borrow_id, borrow.status, "approve")

        return self._run("approve", change)

    def mark_returning(
        self, actor: Actor, borrow_id: str, proof: Optional[ProofImage] = None
    ) -> LifecycleResult:
        return_ref = None
        if proof is not None:
            try:
                return_ref = self.attachments.store(proof.content, proof.media_type)
            except InvalidAttachmentError as e:
                return self._reject("return", e)

        def change(items, borrows):
            borrow = _locate(borrows, borrow_id)
            if not (actor.is_admin or actor.user_id == borrow.borrower_id):
                raise PermissionDeniedError(actor.user_id, f"return {borrow_id}")
            if borrow.status != BorrowStatus.APPROVED:
                raise InvalidTransitionError(borrow_id, borrow.status, "return")

            orphans = ()
            if return_ref:
                orphans = (borrow.return_proof_image,)
                borrow.return_proof_image = return_ref
            borrow.status = BorrowStatus.RETURNING
            return _Change(borrows, borrow, orphans=orphans)

        return self._run("return", change, fresh_ref=return_ref)

    def cancel(self, actor: Actor, borrow_id: str) -> LifecycleResult:
        """Withdraw a pending request, or reject a pending return."""

        def change(items, borrows):
            borrow = _locate(borrows, borrow_id)
            participants = (borrow.borrower_id, borrow.owner_id)
            if not (actor.is_admin or actor.user_id in participants):
                raise PermissionDeniedError(actor.user_id, f"cancel {borrow_id}")

            if borrow.status == BorrowStatus.PENDING:
                remaining = [b for b in borrows if b.id != borrow_id]
                orphans = (borrow.proof_image,)
                borrow.proof_image = None
                return _Change(remaining, borrow, deleted=True, orphans=orphans)

            if borrow.status == BorrowStatus.RETURNING:
                orphans = (borrow.return_proof_image,)
                borrow.status = BorrowStatus.APPROVED
                borrow.return_proof_image = None
                return _Change(borrows, borrow, orphans=orphans)

            raise InvalidTransitionError(borrow_id, borrow.status, "cancel")

        return self._run("cancel", change)

    def _run(self, operation: str, change, fresh_ref: Optional[str] = None):
        try:
            with self.store.transaction() as tx:
                items = tx.read("items")
                borrows = tx.read("borrows")
                result = change(items, borrows)
                tx.write("borrows", result.borrows)
                tx.write("items", inventory.apply_availability(items, result.borrows))
        except StorageError:
            self.attachments.discard(fresh_ref)
            raise
        except LendingException as e:
            self.attachments.discard(fresh_ref)
            return self._reject(operation, e)

        self.attachments.discard(*result.orphans)
        borrow = result.borrow
        if result.deleted:
            logger.info(f"Borrow {borrow.id} {operation}: record removed")
        else:
            logger.info(f"Borrow {borrow.id} {operation}: now {borrow.status}")
        return LifecycleResult.success(borrow, deleted=result.deleted)

    def _reject(self, operation: str, exc: LendingException) -> LifecycleResult:
        logger.warning(f"Borrow {operation} rejected: {exc}")
        return LifecycleResult.failure(exc)


def _locate(borrows, borrow_id: str) -> BorrowRecord:
    borrow = find_by_id(borrows, borrow_id)
    if borrow is None:
        raise BorrowNotFoundError(borrow_id)
    return borrow
