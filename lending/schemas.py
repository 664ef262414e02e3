from datetime import datetime, timezone
from enum import Enum
from pydantic import BaseModel, Field, field_validator
from typing import Optional

from lending.exceptions import LendingException


class BorrowStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    RETURNING = "returning"
    RETURNED = "returned"


# Stored records, one per row of the matching collection.
class UserRecord(BaseModel):
    id: str
    username: str
    password_hash: str
    is_admin: bool = False

    class Config:
        from_attributes = True
        validate_assignment = True


class ItemRecord(BaseModel):
    id: str
    owner_id: str
    name: str
    description: str = ""
    available: bool = True

    class Config:
        from_attributes = True
        validate_assignment = True


class BorrowRecord(BaseModel):
    id: str
    item_id: str
    borrower_id: str
    owner_id: str
    status: BorrowStatus
    request_date: datetime
    proof_image: Optional[str] = None
    return_proof_image: Optional[str] = None

    class Config:
        from_attributes = True
        validate_assignment = True
        use_enum_values = True

    # SQLite hands DateTime columns back without tzinfo
    @field_validator("request_date")
    @classmethod
    def as_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class Actor(BaseModel):
    """The user on whose behalf an operation runs."""

    user_id: str
    is_admin: bool = False


class ProofImage(BaseModel):
    content: bytes
    media_type: str


class LifecycleResult(BaseModel):
    ok: bool
    borrow: Optional[BorrowRecord] = None
    deleted: bool = False
    error: Optional[str] = None
    message: Optional[str] = None

    @classmethod
    def success(cls, borrow: BorrowRecord, deleted: bool = False):
        return cls(ok=True, borrow=borrow, deleted=deleted)

    @classmethod
    def failure(cls, exc: LendingException):
        return cls(ok=False, error=exc.kind, message=str(exc))


# Request / response schemas
class UserCreate(BaseModel):
    username: str
    password: str


class UserSchema(BaseModel):
    id: str
    username: str
    is_admin: bool

    class Config:
        from_attributes = True


class ItemCreate(BaseModel):
    name: str = Field(..., max_length=200)
    description: str = ""
    owner_id: Optional[str] = None


class OwnedItemView(BaseModel):
    item: ItemRecord
    borrower_username: Optional[str] = None


class LoanView(BaseModel):
    borrow: BorrowRecord
    item_name: str
    counterpart_username: str


class BorrowableItemView(BaseModel):
    item: ItemRecord
    owner_username: str
    already_requested: bool = False


class PendingCountSchema(BaseModel):
    count: int
