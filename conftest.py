import pytest
from fastapi.testclient import TestClient

from lending.attachments import AttachmentManager
from lending.inventory import find_violations
from lending.lifecycle import BorrowLifecycle
from lending.main import app, get_attachments, get_record_store
from lending.schemas import Actor, ItemRecord, ProofImage, UserRecord
from lending.storage import get_store

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32
JPEG_BYTES = b"\xff\xd8\xff\xe0" + b"\x00" * 32


@pytest.fixture(scope="function")
def store(tmp_path):
    record_store = get_store(f"sqlite:///{tmp_path / 'test.db'}")
    yield record_store
    record_store.engine.dispose()


@pytest.fixture(scope="function")
def upload_dir(tmp_path):
    return tmp_path / "uploads"


@pytest.fixture(scope="function")
def attachments(upload_dir):
    return AttachmentManager(upload_dir)


@pytest.fixture(scope="function")
def lifecycle(store, attachments):
    return BorrowLifecycle(store, attachments)


@pytest.fixture(scope="function")
def users(store):
    records = [
        UserRecord(id="u_admin", username="admin", password_hash="x", is_admin=True),
        UserRecord(id="u_owner", username="owner", password_hash="x"),
        UserRecord(id="u_borrower", username="borrower", password_hash="x"),
        UserRecord(id="u_other", username="other", password_hash="x"),
    ]
    store.write("users", records)
    return {record.username: record for record in records}


@pytest.fixture(scope="function")
def admin(users):
    return Actor(user_id="u_admin", is_admin=True)


@pytest.fixture(scope="function")
def owner(users):
    return Actor(user_id="u_owner")


@pytest.fixture(scope="function")
def borrower(users):
    return Actor(user_id="u_borrower")


@pytest.fixture(scope="function")
def other_borrower(users):
    return Actor(user_id="u_other")


@pytest.fixture(scope="function")
def test_item(store, owner):
    item = ItemRecord(
        id="i_drill", owner_id=owner.user_id, name="Drill", description="Cordless"
    )
    store.write("items", [item])
    return item


@pytest.fixture(scope="function")
def png_proof():
    return ProofImage(content=PNG_BYTES, media_type="image/png")


@pytest.fixture(scope="function")
def jpeg_proof():
    return ProofImage(content=JPEG_BYTES, media_type="image/jpeg")


@pytest.fixture(scope="function")
def check_inventory(store):
    def check():
        items, borrows = store.read("items"), store.read("borrows")
        assert find_violations(items, borrows) == []

    return check


@pytest.fixture(scope="function")
def client(store, attachments):
    app.state.testing = True
    app.dependency_overrides[get_record_store] = lambda: store
    app.dependency_overrides[get_attachments] = lambda: attachments
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
    app.state.testing = False
