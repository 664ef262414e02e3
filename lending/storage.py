import contextlib
import logging
import os
import threading
import uuid
from typing import Dict, List

from dotenv import load_dotenv
from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from lending import models, schemas
from lending.exceptions import StorageError

load_dotenv()

SQLALCHEMY_DATABASE_URL = os.getenv("SQLALCHEMY_DATABASE_URL", "sqlite:///./lending.db")
UPLOAD_DIR = os.getenv("UPLOAD_DIR", "./uploads")

logger = logging.getLogger(__name__)

# collection name -> (table, record schema)
COLLECTIONS = {
    "users": (models.User, schemas.UserRecord),
    "items": (models.Item, schemas.ItemRecord),
    "borrows": (models.Borrow, schemas.BorrowRecord),
}


def new_id(prefix: str) -> str:
    return f"{prefix}{uuid.uuid4().hex}"


def make_engine(url: str = SQLALCHEMY_DATABASE_URL):
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, connect_args=connect_args)


def init_db(engine):
    models.Base.metadata.create_all(bind=engine)


def find_by_id(records, record_id):
    for record in records:
        if record.id == record_id:
            return record
    return None


def index_by_id(records) -> Dict[str, object]:
    return {record.id: record for record in records}


class Transaction:
    """Read-modify-write unit over one or more collections.

    Reads return detached copies; nothing written through `write` is visible
    to anyone else until the owning `RecordStore.transaction` block exits
    and the session commits.
    """

    def __init__(self, session: Session):
        self.session = session
        self._staged: Dict[str, list] = {}

    def read(self, collection: str) -> list:
        table, schema = _lookup(collection)
        if collection in self._staged:
            return [record.model_copy() for record in self._staged[collection]]
        rows = self.session.query(table).order_by(table.seq).all()
        return [schema.model_validate(row) for row in rows]

    def write(self, collection: str, records: List) -> None:
        _lookup(collection)
        self._staged[collection] = [record.model_copy() for record in records]

    def apply(self) -> None:
        for collection, records in self._staged.items():
            self._replace(collection, records)

    def _replace(self, collection: str, records: List) -> None:
        table, _ = _lookup(collection)
        existing = {row.id: row for row in self.session.query(table).all()}
        kept = set()
        for record in records:
            data = record.model_dump()
            row = existing.get(record.id)
            if row is None:
                self.session.add(table(**data))
            else:
                for key, value in data.items():
                    setattr(row, key, value)
            kept.add(record.id)
        for record_id, row in existing.items():
            if record_id not in kept:
                self.session.delete(row)


def _lookup(collection: str):
    try:
        return COLLECTIONS[collection]
    except KeyError:
        raise ValueError(f"Unknown collection: {collection}")


class RecordStore:
    """Named collections of flat records behind a single writer.

    Every transaction holds the store lock for its whole read-modify-write
    span, so two transactions never interleave and the collections they
    write are committed together or not at all. The lock is reentrant: a
    `read` or `write` issued inside a transaction block runs as its own
    transaction against committed state.
    """

    def __init__(self, engine):
        self.engine = engine
        self.session_factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
        self._lock = threading.RLock()

    @contextlib.contextmanager
    def transaction(self):
        with self._lock:
            session = self.session_factory()
            tx = Transaction(session)
            try:
                yield tx
                tx.apply()
                session.commit()
            except SQLAlchemyError as e:
                session.rollback()
                logger.error(f"Transaction rolled back: {e}")
                raise StorageError("commit", str(e))
            except Exception:
                session.rollback()
                raise
            finally:
                session.close()

    def read(self, collection: str) -> list:
        with self.transaction() as tx:
            return tx.read(collection)

    def write(self, collection: str, records: List) -> None:
        with self.transaction() as tx:
            tx.write(collection, records)


def get_store(url: str = SQLALCHEMY_DATABASE_URL) -> RecordStore:
    engine = make_engine(url)
    init_db(engine)
    return RecordStore(engine)
