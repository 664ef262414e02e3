import os
from contextlib import asynccontextmanager
import logging
from typing import List, Optional

from fastapi import Depends, FastAPI, File, Header, HTTPException, UploadFile, status

from lending import crud
from lending.attachments import AttachmentManager
from lending.exceptions import STATUS_CODES, add_exception_handlers
from lending.lifecycle import BorrowLifecycle
from lending.schemas import (
    Actor,
    BorrowableItemView,
    BorrowRecord,
    ItemCreate,
    ItemRecord,
    LifecycleResult,
    LoanView,
    OwnedItemView,
    PendingCountSchema,
    ProofImage,
    UserCreate,
    UserSchema,
)
from lending.storage import UPLOAD_DIR, RecordStore, get_store

# Set up logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.testing = app.state.testing if hasattr(app.state, "testing") else False

    if not app.state.testing:
        logger.info("Initializing record store")
        app.state.store = get_store()
        app.state.attachments = AttachmentManager(UPLOAD_DIR)
    yield
    if not app.state.testing:
        logger.info("Closing record store")
        app.state.store.engine.dispose()


app = FastAPI(
    title="Lending API",
    lifespan=lifespan,
    description="Peer-to-peer item lending between registered users",
    version="1.0.0",
)

add_exception_handlers(app)


def get_record_store() -> RecordStore:
    return app.state.store


def get_attachments() -> AttachmentManager:
    return app.state.attachments


def get_lifecycle(
    store: RecordStore = Depends(get_record_store),
    attachments: AttachmentManager = Depends(get_attachments),
) -> BorrowLifecycle:
    return BorrowLifecycle(store, attachments)


def get_actor(
    x_user_id: Optional[str] = Header(None),
    store: RecordStore = Depends(get_record_store),
) -> Actor:
    # Authentication happens upstream; all we get is the resolved user id.
    user = crud.get_user(store, x_user_id) if x_user_id else None
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Unknown or missing user"
        )
    return Actor(user_id=user.id, is_admin=user.is_admin)


def read_upload(upload: Optional[UploadFile]) -> Optional[ProofImage]:
    if upload is None or not upload.filename:
        return None
    return ProofImage(content=upload.file.read(), media_type=upload.content_type or "")


def unwrap(result: LifecycleResult) -> BorrowRecord:
    if not result.ok:
        raise HTTPException(
            status_code=STATUS_CODES.get(result.error, 400), detail=result.message
        )
    return result.borrow


# Endpoints
@app.post("/users/", response_model=UserSchema, status_code=status.HTTP_201_CREATED)
def create_user(user: UserCreate, store: RecordStore = Depends(get_record_store)):
    return crud.register_user(store, user)


@app.post("/items/", response_model=ItemRecord, status_code=status.HTTP_201_CREATED)
def create_item(
    item: ItemCreate,
    actor: Actor = Depends(get_actor),
    store: RecordStore = Depends(get_record_store),
):
    return crud.add_item(store, actor, item)


@app.get("/items/borrowable", response_model=List[BorrowableItemView])
def list_borrowable(
    actor: Actor = Depends(get_actor), store: RecordStore = Depends(get_record_store)
):
    return crud.list_borrowable_items(store, actor.user_id)


@app.get("/me/items", response_model=List[OwnedItemView])
def list_my_items(
    actor: Actor = Depends(get_actor), store: RecordStore = Depends(get_record_store)
):
    return crud.list_owned_items(store, actor.user_id)


@app.get("/me/borrows", response_model=List[LoanView])
def list_my_borrows(
    actor: Actor = Depends(get_actor), store: RecordStore = Depends(get_record_store)
):
    return crud.list_borrower_loans(store, actor.user_id)


@app.get("/me/requests", response_model=List[LoanView])
def list_my_requests(
    actor: Actor = Depends(get_actor), store: RecordStore = Depends(get_record_store)
):
    return crud.list_owner_requests(store, actor.user_id)


@app.get("/me/pending-count", response_model=PendingCountSchema)
def pending_count(
    actor: Actor = Depends(get_actor), store: RecordStore = Depends(get_record_store)
):
    return PendingCountSchema(count=crud.count_pending_actions(store, actor.user_id))


@app.post("/items/{item_id}/borrow", response_model=BorrowRecord)
def borrow_item(
    item_id: str,
    proof_image: Optional[UploadFile] = File(None),
    actor: Actor = Depends(get_actor),
    lifecycle: BorrowLifecycle = Depends(get_lifecycle),
):
    logger.info(f"Borrow request for item {item_id} by {actor.user_id}")
    return unwrap(lifecycle.request_borrow(actor, item_id, read_upload(proof_image)))


@app.post("/borrows/{borrow_id}/approve", response_model=BorrowRecord)
def approve_borrow(
    borrow_id: str,
    actor: Actor = Depends(get_actor),
    lifecycle: BorrowLifecycle = Depends(get_lifecycle),
):
    return unwrap(lifecycle.approve(actor, borrow_id))


@app.post("/borrows/{borrow_id}/return", response_model=BorrowRecord)
def return_borrow(
    borrow_id: str,
    return_proof_image: Optional[UploadFile] = File(None),
    actor: Actor = Depends(get_actor),
    lifecycle: BorrowLifecycle = Depends(get_lifecycle),
):
    proof = read_upload(return_proof_image)
    return unwrap(lifecycle.mark_returning(actor, borrow_id, proof))


@app.post("/borrows/{borrow_id}/cancel")
def cancel_borrow(
    borrow_id: str,
    actor: Actor = Depends(get_actor),
    lifecycle: BorrowLifecycle = Depends(get_lifecycle),
):
    result = lifecycle.cancel(actor, borrow_id)
    borrow = unwrap(result)
    if result.deleted:
        return {"status": "cancelled"}
    return borrow.model_dump(mode="json")


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("LENDING_PORT", "8000"))
    print(f"Starting lending server on port {port}")
    uvicorn.run(app, host="0.0.0.0", port=port)
