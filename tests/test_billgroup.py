from database import BILL_GROUPS


def test_group_created_on_first_read(client, store, ann, ann_headers):
    response = client.get("/api/billgroup", headers=ann_headers)
    assert response.status_code == 200
    group = response.json()
    assert group["groupName"] == "My Group"
    assert group["people"] == []
    assert group["expenses"] == []
    assert group["userId"] == ann["user"]["id"]

    client.get("/api/billgroup", headers=ann_headers)
    assert len(store.get_documents(BILL_GROUPS, {"userId": ann["user"]["id"]})) == 1


def test_groups_are_per_user(client, ann_headers, bob_headers):
    client.post("/api/billgroup/person", json={"name": "Carol"}, headers=ann_headers)
    assert client.get("/api/billgroup", headers=bob_headers).json()["people"] == []


def test_add_person_defaults(client, ann_headers):
    response = client.post("/api/billgroup/person", json={"name": "  Carol  "}, headers=ann_headers)
    assert response.status_code == 200
    person = response.json()["people"][0]
    assert person["name"] == "Carol"
    assert person["note"] == "Hello, My name is Carol"
    assert person["initialBalance"] == 0.0
    assert person["id"] == person["_id"]


def test_add_person_parses_balance(client, ann_headers):
    people = client.post(
        "/api/billgroup/person",
        json={"name": "Dan", "note": "Owes pizza", "initialBalance": "-12.5"},
        headers=ann_headers,
    ).json()["people"]
    assert people[0]["note"] == "Owes pizza"
    assert people[0]["initialBalance"] == -12.5

    people = client.post(
        "/api/billgroup/person",
        json={"name": "Eve", "initialBalance": "lots"},
        headers=ann_headers,
    ).json()["people"]
    assert people[1]["initialBalance"] == 0.0


def test_add_person_requires_name(client, ann_headers):
    for body in ({}, {"name": "   "}):
        response = client.post("/api/billgroup/person", json=body, headers=ann_headers)
        assert response.status_code == 400
        assert response.json() == {"message": "Person name is required"}


def test_remove_person_is_idempotent(client, ann_headers):
    group = client.post("/api/billgroup/person", json={"name": "Carol"}, headers=ann_headers).json()
    group = client.post("/api/billgroup/person", json={"name": "Dan"}, headers=ann_headers).json()
    carol_id = group["people"][0]["id"]

    response = client.delete(f"/api/billgroup/person/{carol_id}", headers=ann_headers)
    assert response.status_code == 200
    assert [person["name"] for person in response.json()["people"]] == ["Dan"]

    again = client.delete(f"/api/billgroup/person/{carol_id}", headers=ann_headers)
    assert again.status_code == 200
    assert [person["name"] for person in again.json()["people"]] == ["Dan"]

    unknown = client.delete("/api/billgroup/person/not-an-id", headers=ann_headers)
    assert [person["name"] for person in unknown.json()["people"]] == ["Dan"]


def test_add_expense(client, ann_headers):
    response = client.post(
        "/api/billgroup/expense",
        json={"description": "Groceries", "amount": "42.10", "payer": "Carol", "date": "2024-03-01T12:00:00Z"},
        headers=ann_headers,
    )
    assert response.status_code == 200
    expense = response.json()["expenses"][0]
    assert expense["description"] == "Groceries"
    assert expense["amount"] == 42.1
    assert expense["payer"] == "Carol"
    assert expense["date"] == "2024-03-01T12:00:00.000Z"
    assert expense["splitType"] == "equal"
    assert expense["shares"] == {}


def test_add_expense_with_shares(client, ann_headers):
    response = client.post(
        "/api/billgroup/expense",
        json={
            "description": "Rent",
            "amount": 900,
            "payer": "Dan",
            "splitType": "shares",
            "shares": {"Carol": 2, "Dan": "1"},
        },
        headers=ann_headers,
    )
    expense = response.json()["expenses"][0]
    assert expense["splitType"] == "shares"
    assert expense["shares"] == {"Carol": 2.0, "Dan": 1.0}
    assert expense["date"].endswith("Z")


def test_add_expense_rejects(client, ann_headers):
    cases = [
        ({"amount": 10, "payer": "Carol"}, "Description, amount, and payer are required"),
        ({"description": "Taxi", "payer": "Carol"}, "Description, amount, and payer are required"),
        ({"description": "Taxi", "amount": 10}, "Description, amount, and payer are required"),
        ({"description": "Taxi", "amount": 0, "payer": "Carol"}, "Description, amount, and payer are required"),
        ({"description": "Taxi", "amount": -4, "payer": "Carol"}, "Amount must be greater than 0"),
        ({"description": "Taxi", "amount": "ten", "payer": "Carol"}, "Amount must be greater than 0"),
        ({"description": "Taxi", "amount": 10, "payer": "Carol", "splitType": "percent"},
         "Split type must be equal or shares"),
        ({"description": "Taxi", "amount": 10, "payer": "Carol", "date": "yesterday"}, "Invalid date"),
        ({"description": "Taxi", "amount": 10, "payer": "Carol", "shares": {"Carol": -1}}, "Invalid share for Carol"),
    ]
    for body, message in cases:
        response = client.post("/api/billgroup/expense", json=body, headers=ann_headers)
        assert response.status_code == 400, body
        assert response.json() == {"message": message}

    assert client.get("/api/billgroup", headers=ann_headers).json()["expenses"] == []


def test_remove_expense(client, ann_headers):
    group = client.post(
        "/api/billgroup/expense",
        json={"description": "Taxi", "amount": 10, "payer": "Carol"},
        headers=ann_headers,
    ).json()
    expense_id = group["expenses"][0]["id"]

    response = client.delete(f"/api/billgroup/expense/{expense_id}", headers=ann_headers)
    assert response.status_code == 200
    assert response.json()["expenses"] == []

    again = client.delete(f"/api/billgroup/expense/{expense_id}", headers=ann_headers)
    assert again.status_code == 200
    assert again.json()["expenses"] == []


def test_reset_discards_group(client, store, ann, ann_headers):
    client.post("/api/billgroup/person", json={"name": "Carol"}, headers=ann_headers)

    response = client.delete("/api/billgroup/reset", headers=ann_headers)
    assert response.status_code == 200
    assert response.json() == {"message": "Bill group reset successfully"}
    assert store.find_one(BILL_GROUPS, {"userId": ann["user"]["id"]}) is None

    assert client.delete("/api/billgroup/reset", headers=ann_headers).status_code == 200
    assert client.get("/api/billgroup", headers=ann_headers).json()["people"] == []


def test_billgroup_requires_login(client):
    assert client.get("/api/billgroup").status_code == 401
    assert client.post("/api/billgroup/person", json={"name": "Carol"}).status_code == 401
