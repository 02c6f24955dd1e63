import pytest

from database import MARKETPLACE_ITEMS


def item_body(**overrides):
    body = {
        "title": "Desk lamp",
        "description": "Warm white LED lamp, works fine",
        "price": 15.5,
        "image": "https://img.example.com/lamp.png",
        "sellerPhone": "(555) 010-2030",
    }
    body.update(overrides)
    return body


@pytest.fixture
def item(client, ann_headers):
    response = client.post("/api/marketplace/items", json=item_body(), headers=ann_headers)
    assert response.status_code == 201
    return response.json()["item"]


def test_create_item_snapshots_seller(client, ann, item):
    assert item["title"] == "Desk lamp"
    assert item["price"] == 15.5
    assert item["condition"] == "Good"
    assert item["category"] == "other"
    assert item["sellerName"] == "Ann Lee"
    assert item["sellerEmail"] == "ann@uni.edu"
    assert item["userId"] == ann["user"]["id"]
    assert item["isOwner"] is True
    assert item["id"] == item["_id"]
    assert item["createdAt"].endswith("Z")


def test_create_item_message(client, ann_headers):
    response = client.post(
        "/api/marketplace/items",
        json=item_body(condition="Like New", category="furniture", price="40"),
        headers=ann_headers,
    )
    assert response.status_code == 201
    body = response.json()
    assert body["message"] == "Item listed successfully"
    assert body["item"]["condition"] == "Like New"
    assert body["item"]["category"] == "furniture"
    assert body["item"]["price"] == 40.0


def test_create_requires_login(client):
    response = client.post("/api/marketplace/items", json=item_body())
    assert response.status_code == 401
    assert response.json()["message"] == "Access token required"


def test_create_reports_all_invalid_fields(client, ann_headers):
    response = client.post(
        "/api/marketplace/items",
        json={"title": "ab", "description": "short", "price": -1, "image": "not a url", "condition": "Broken"},
        headers=ann_headers,
    )
    assert response.status_code == 400
    errors = {error["field"]: error["message"] for error in response.json()["errors"]}
    assert errors == {
        "title": "Title must be between 3 and 100 characters",
        "description": "Description must be between 10 and 1000 characters",
        "price": "Price must be a positive number",
        "image": "Please provide a valid image URL",
        "condition": "Invalid condition",
        "sellerPhone": "Phone number is required",
    }


def test_phone_rules(client, ann_headers):
    response = client.post("/api/marketplace/items", json=item_body(sellerPhone="12345"), headers=ann_headers)
    assert response.json()["errors"] == [
        {"field": "sellerPhone", "message": "Phone number must be between 10 and 15 digits"}
    ]

    response = client.post("/api/marketplace/items", json=item_body(sellerPhone="555-010-20ab"), headers=ann_headers)
    assert response.json()["errors"] == [
        {"field": "sellerPhone", "message": "Phone number can only contain numbers, +, -, spaces, and parentheses"}
    ]


def test_list_is_public_and_newest_first(client, ann_headers, bob_headers):
    client.post("/api/marketplace/items", json=item_body(title="First item"), headers=ann_headers)
    client.post("/api/marketplace/items", json=item_body(title="Second item"), headers=bob_headers)

    anonymous = client.get("/api/marketplace/items").json()
    assert [entry["title"] for entry in anonymous] == ["Second item", "First item"]
    assert all(entry["isOwner"] is False for entry in anonymous)

    as_ann = client.get("/api/marketplace/items", headers=ann_headers).json()
    assert {entry["title"]: entry["isOwner"] for entry in as_ann} == {"First item": True, "Second item": False}


def test_list_with_bad_token_is_anonymous(client, item):
    response = client.get("/api/marketplace/items", headers={"Authorization": "Bearer garbage"})
    assert response.status_code == 200
    assert response.json()[0]["isOwner"] is False


def test_get_item(client, item, bob_headers):
    response = client.get(f"/api/marketplace/items/{item['id']}", headers=bob_headers)
    assert response.status_code == 200
    assert response.json()["isOwner"] is False
    assert response.json()["sellerName"] == "Ann Lee"


@pytest.mark.parametrize("item_id", ["507f1f77bcf86cd799439011", "not-an-id"])
def test_get_unknown_item(client, item_id):
    response = client.get(f"/api/marketplace/items/{item_id}")
    assert response.status_code == 404
    assert response.json() == {"message": "Item not found"}


def test_my_items(client, ann_headers, bob_headers, item):
    client.post("/api/marketplace/items", json=item_body(title="Bob's chair"), headers=bob_headers)

    mine = client.get("/api/marketplace/my-items", headers=ann_headers).json()
    assert [entry["id"] for entry in mine] == [item["id"]]
    assert mine[0]["isOwner"] is True

    assert client.get("/api/marketplace/my-items").status_code == 401


def test_update_item(client, store, ann_headers, item):
    client.put(
        f"/api/marketplace/items/{item['id']}",
        json=item_body(condition="Fair", category="electronics"),
        headers=ann_headers,
    )
    response = client.put(
        f"/api/marketplace/items/{item['id']}",
        json=item_body(title="Desk lamp (new bulb)", price=18),
        headers=ann_headers,
    )
    assert response.status_code == 200
    body = response.json()
    assert body["message"] == "Item updated successfully"
    updated = body["item"]
    assert updated["title"] == "Desk lamp (new bulb)"
    assert updated["price"] == 18.0
    # Omitted condition and category keep their stored values
    assert updated["condition"] == "Fair"
    assert updated["category"] == "electronics"
    assert updated["sellerEmail"] == "ann@uni.edu"
    assert updated["isOwner"] is True

    assert store.find_by_id(MARKETPLACE_ITEMS, item["id"])["title"] == "Desk lamp (new bulb)"


def test_update_requires_full_body(client, ann_headers, item):
    response = client.put(f"/api/marketplace/items/{item['id']}", json={"title": "Only title"}, headers=ann_headers)
    assert response.status_code == 400
    fields = {error["field"] for error in response.json()["errors"]}
    assert fields == {"description", "price", "image", "sellerPhone"}


def test_only_owner_can_update_or_delete(client, store, bob_headers, item):
    response = client.put(f"/api/marketplace/items/{item['id']}", json=item_body(), headers=bob_headers)
    assert response.status_code == 403
    assert response.json() == {"message": "You are not authorized to update this item"}

    response = client.delete(f"/api/marketplace/items/{item['id']}", headers=bob_headers)
    assert response.status_code == 403
    assert response.json() == {"message": "You are not authorized to delete this item"}

    assert store.find_by_id(MARKETPLACE_ITEMS, item["id"]) is not None


def test_update_unknown_item(client, ann_headers):
    response = client.put("/api/marketplace/items/507f1f77bcf86cd799439011", json=item_body(), headers=ann_headers)
    assert response.status_code == 404


def test_delete_item(client, ann_headers, item):
    response = client.delete(f"/api/marketplace/items/{item['id']}", headers=ann_headers)
    assert response.status_code == 200
    assert response.json() == {"message": "Item deleted successfully"}

    assert client.get(f"/api/marketplace/items/{item['id']}").status_code == 404
    assert client.delete(f"/api/marketplace/items/{item['id']}", headers=ann_headers).status_code == 404
