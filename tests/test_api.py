from unittest.mock import patch

from sqlalchemy.exc import OperationalError

from lending.storage import Transaction

PNG = ("proof.png", b"\x89PNG\r\n\x1a\n0000", "image/png")
JPEG = ("return.jpg", b"\xff\xd8\xff\xe00000", "image/jpeg")


def as_user(user_id):
    return {"X-User-Id": user_id}


def test_create_user(client):
    response = client.post("/users/", json={"username": "newuser", "password": "pw"})

    assert response.status_code == 201
    data = response.json()
    assert data["username"] == "newuser"
    assert data["is_admin"] is True
    assert "password_hash" not in data


def test_create_duplicate_user(client):
    client.post("/users/", json={"username": "newuser", "password": "pw"})

    response = client.post("/users/", json={"username": "newuser", "password": "pw"})

    assert response.status_code == 409


def test_create_user_missing_password(client):
    response = client.post("/users/", json={"username": "newuser"})

    assert response.status_code == 422


def test_unknown_actor_is_rejected(client, users):
    assert client.get("/me/items").status_code == 401
    assert client.get("/me/items", headers=as_user("u_nobody")).status_code == 401


def test_create_item(client, owner):
    response = client.post(
        "/items/", json={"name": "Kayak", "description": "Two seats"}, headers=as_user(owner.user_id)
    )

    assert response.status_code == 201
    data = response.json()
    assert data["owner_id"] == owner.user_id
    assert data["available"] is True


def test_create_item_for_other_user_forbidden(client, owner, borrower):
    response = client.post(
        "/items/",
        json={"name": "Kayak", "owner_id": owner.user_id},
        headers=as_user(borrower.user_id),
    )

    assert response.status_code == 403


def test_borrow_flow(client, store, upload_dir, test_item, owner, borrower):
    response = client.post(
        f"/items/{test_item.id}/borrow",
        files={"proof_image": PNG},
        headers=as_user(borrower.user_id),
    )
    assert response.status_code == 200
    borrow = response.json()
    assert borrow["status"] == "pending"
    assert borrow["proof_image"].startswith("uploads/")

    count = client.get("/me/pending-count", headers=as_user(owner.user_id))
    assert count.json() == {"count": 1}

    response = client.post(f"/borrows/{borrow['id']}/approve", headers=as_user(owner.user_id))
    assert response.status_code == 200
    assert response.json()["status"] == "approved"

    response = client.post(
        f"/borrows/{borrow['id']}/return",
        files={"return_proof_image": JPEG},
        headers=as_user(borrower.user_id),
    )
    assert response.status_code == 200
    assert response.json()["status"] == "returning"

    [loan] = client.get("/me/borrows", headers=as_user(borrower.user_id)).json()
    assert loan["item_name"] == "Drill"
    assert loan["borrow"]["status"] == "returning"

    response = client.post(f"/borrows/{borrow['id']}/approve", headers=as_user(owner.user_id))
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "returned"
    assert data["proof_image"] is None
    assert data["return_proof_image"] is None
    assert list(upload_dir.iterdir()) == []

    [owned] = client.get("/me/items", headers=as_user(owner.user_id)).json()
    assert owned["item"]["available"] is True


def test_borrow_listing_keeps_request_date(client, test_item, borrower):
    borrow = client.post(
        f"/items/{test_item.id}/borrow",
        files={"proof_image": PNG},
        headers=as_user(borrower.user_id),
    ).json()

    [loan] = client.get("/me/borrows", headers=as_user(borrower.user_id)).json()

    assert loan["borrow"]["request_date"] == borrow["request_date"]
    assert borrow["request_date"].endswith("Z")


def test_borrow_without_proof(client, test_item, borrower):
    response = client.post(f"/items/{test_item.id}/borrow", headers=as_user(borrower.user_id))

    assert response.status_code == 422


def test_borrow_with_wrong_media_type(client, test_item, borrower):
    response = client.post(
        f"/items/{test_item.id}/borrow",
        files={"proof_image": ("notes.txt", b"hello", "text/plain")},
        headers=as_user(borrower.user_id),
    )

    assert response.status_code == 422
    assert "media type" in response.json()["detail"]


def test_borrow_own_item(client, test_item, owner):
    response = client.post(
        f"/items/{test_item.id}/borrow",
        files={"proof_image": PNG},
        headers=as_user(owner.user_id),
    )

    assert response.status_code == 409


def test_borrow_unknown_item(client, borrower):
    response = client.post(
        "/items/i_missing/borrow", files={"proof_image": PNG}, headers=as_user(borrower.user_id)
    )

    assert response.status_code == 404


def test_borrowable_items(client, test_item, borrower):
    response = client.get("/items/borrowable", headers=as_user(borrower.user_id))

    assert response.status_code == 200
    [offer] = response.json()
    assert offer["owner_username"] == "owner"
    assert offer["already_requested"] is False


def test_cancel_pending(client, store, test_item, borrower):
    borrow = client.post(
        f"/items/{test_item.id}/borrow",
        files={"proof_image": PNG},
        headers=as_user(borrower.user_id),
    ).json()

    response = client.post(f"/borrows/{borrow['id']}/cancel", headers=as_user(borrower.user_id))

    assert response.status_code == 200
    assert response.json() == {"status": "cancelled"}
    assert store.read("borrows") == []


def test_reject_return(client, test_item, owner, borrower):
    borrow = client.post(
        f"/items/{test_item.id}/borrow",
        files={"proof_image": PNG},
        headers=as_user(borrower.user_id),
    ).json()
    client.post(f"/borrows/{borrow['id']}/approve", headers=as_user(owner.user_id))
    client.post(
        f"/borrows/{borrow['id']}/return",
        files={"return_proof_image": JPEG},
        headers=as_user(borrower.user_id),
    )

    response = client.post(f"/borrows/{borrow['id']}/cancel", headers=as_user(owner.user_id))

    assert response.status_code == 200
    assert response.json()["status"] == "approved"
    assert response.json()["return_proof_image"] is None

    [request] = client.get("/me/requests", headers=as_user(owner.user_id)).json()
    assert request["counterpart_username"] == "borrower"


def test_cancel_approved_conflict(client, test_item, owner, borrower):
    borrow = client.post(
        f"/items/{test_item.id}/borrow",
        files={"proof_image": PNG},
        headers=as_user(borrower.user_id),
    ).json()
    client.post(f"/borrows/{borrow['id']}/approve", headers=as_user(owner.user_id))

    response = client.post(f"/borrows/{borrow['id']}/cancel", headers=as_user(borrower.user_id))

    assert response.status_code == 409


def test_approve_by_borrower_forbidden(client, test_item, borrower):
    borrow = client.post(
        f"/items/{test_item.id}/borrow",
        files={"proof_image": PNG},
        headers=as_user(borrower.user_id),
    ).json()

    response = client.post(f"/borrows/{borrow['id']}/approve", headers=as_user(borrower.user_id))

    assert response.status_code == 403


def test_storage_failure_returns_500(client, test_item, borrower, upload_dir):
    failure = OperationalError("INSERT", {}, Exception("disk full"))

    with patch.object(Transaction, "_replace", side_effect=failure):
        response = client.post(
            f"/items/{test_item.id}/borrow",
            files={"proof_image": PNG},
            headers=as_user(borrower.user_id),
        )

    assert response.status_code == 500
    assert list(upload_dir.iterdir()) == []
