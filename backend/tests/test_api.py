"""
HTTP API tests through Flask's test client.

Verifies:
- Business errors map to their status codes with details
- The acting employee is taken from X-Authorized-By
- Every blueprint answers on its documented paths
"""

import pytest

from wallet.models.people import ROLE_EMPLOYEE
from wallet.services import person_service


ACTOR = {"X-Authorized-By": "Mary"}


class TestHealth:

    def test_health(self, client, db_session):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json["status"] == "healthy"


class TestTransactionsApi:

    def test_create_and_fetch(self, client, make_product):
        product = make_product(name="Rice", stock=5, price_cents=3500)

        resp = client.post("/api/transactions", json={
            "items": [{"product_id": product.id, "quantity": 2}],
            "customer_name": "Ann",
            "transaction_date": "2024-01-31T10:00:00Z",
        }, headers=ACTOR)

        assert resp.status_code == 201
        txn = resp.json["transaction"]
        assert txn["total_cents"] == 7000
        assert txn["status"] == "COMPLETED"
        assert txn["employee_name"] == "Mary"
        assert txn["transaction_date"] == "2024-01-31T10:00:00Z"

        resp = client.get(f"/api/transactions/{txn['id']}")
        assert resp.status_code == 200
        assert resp.json["transaction"]["items"][0]["product_name"] == "Rice"

    def test_insufficient_stock_is_409(self, client, make_product):
        product = make_product(name="Rice", stock=1)

        resp = client.post("/api/transactions", json={
            "items": [{"product_id": product.id, "quantity": 3}],
        })

        assert resp.status_code == 409
        assert resp.json["details"] == {
            "product_id": product.id,
            "product_name": "Rice",
            "available": 1,
            "requested": 3,
        }

    @pytest.mark.parametrize("items", [None, [], [{"product_id": 1, "quantity": 1.5}], "x"])
    def test_bad_items_are_400(self, client, db_session, items):
        resp = client.post("/api/transactions", json={"items": items})
        assert resp.status_code == 400

    def test_missing_transaction_is_404(self, client, db_session):
        assert client.get("/api/transactions/999").status_code == 404

    def test_status_refund_and_delete(self, client, make_product):
        product = make_product(stock=5)
        created = client.post("/api/transactions", json={
            "items": [{"product_id": product.id, "quantity": 1}],
            "customer_name": "Ann",
        }).json["transaction"]

        resp = client.put(f"/api/transactions/{created['id']}/status", json={"status": "REFUNDED"})
        assert resp.status_code == 409

        resp = client.post(f"/api/transactions/{created['id']}/refund", json={"reason": "damaged"})
        assert resp.status_code == 200
        assert resp.json["transaction"]["status"] == "REFUNDED"

        resp = client.post(f"/api/transactions/{created['id']}/refund", json={})
        assert resp.status_code == 409

        resp = client.delete(f"/api/transactions/{created['id']}", headers=ACTOR)
        assert resp.status_code == 409
        assert client.get(f"/api/transactions/{created['id']}").status_code == 200

    def test_delete(self, client, make_product):
        product = make_product(stock=5)
        created = client.post("/api/transactions", json={
            "items": [{"product_id": product.id, "quantity": 1}],
        }).json["transaction"]

        resp = client.delete(f"/api/transactions/{created['id']}", headers=ACTOR)

        assert resp.status_code == 200
        assert client.get(f"/api/transactions/{created['id']}").status_code == 404

    def test_edit_note(self, client, make_product):
        product = make_product(stock=5)
        created = client.post("/api/transactions", json={
            "items": [{"product_id": product.id, "quantity": 1}],
        }).json["transaction"]

        resp = client.put(f"/api/transactions/{created['id']}", json={"note": "call first"})

        assert resp.status_code == 200
        assert resp.json["transaction"]["note"] == "call first"

    def test_null_person_with_name_is_400(self, client, make_product, make_person):
        ann = make_person("Ann")
        product = make_product(stock=5)
        created = client.post("/api/transactions", json={
            "items": [{"product_id": product.id, "quantity": 1}],
            "person_id": ann.id,
        }).json["transaction"]

        resp = client.put(f"/api/transactions/{created['id']}", json={"person_id": None, "customer_name": "Bob"})

        assert resp.status_code == 400
        assert client.get(f"/api/transactions/{created['id']}").json["transaction"]["person_id"] == ann.id

    def test_list_driver_queue(self, client, make_product, make_person):
        from wallet.models.people import ROLE_DRIVER
        sam = make_person("Sam", role=ROLE_DRIVER)
        product = make_product(stock=5)
        client.post("/api/transactions", json={
            "items": [{"product_id": product.id, "quantity": 1}],
            "is_delivery": True,
            "driver_id": sam.id,
        })
        client.post("/api/transactions", json={"items": [{"product_id": product.id, "quantity": 1}]})

        resp = client.get(f"/api/transactions?driver_id={sam.id}&status=pending")

        assert resp.status_code == 200
        assert resp.json["count"] == 1


class TestPaymentsApi:

    def test_over_allocation_is_400(self, client, make_product):
        product = make_product(stock=5, price_cents=1000)
        txn = client.post("/api/transactions", json={
            "items": [{"product_id": product.id, "quantity": 1}],
            "customer_name": "Ann",
        }).json["transaction"]

        resp = client.post("/api/payments", json={
            "amount_cents": 500,
            "allocations": [{"transaction_id": txn["id"], "amount_cents": 800}],
        })

        assert resp.status_code == 400
        assert client.get("/api/payments").json["count"] == 0

    def test_record_sweeps_and_delete(self, client, make_product):
        product = make_product(stock=5, price_cents=1000)
        txn = client.post("/api/transactions", json={
            "items": [{"product_id": product.id, "quantity": 1}],
            "customer_name": "Ann",
        }).json["transaction"]

        resp = client.post("/api/payments", json={
            "amount_cents": 1500, "customer_name": "Ann", "method": "Card",
        }, headers=ACTOR)

        assert resp.status_code == 201
        payment = resp.json["payment"]
        assert payment["allocated_cents"] == 1000
        assert payment["unallocated_cents"] == 500
        assert payment["allocations"][0]["transaction_id"] == txn["id"]
        assert payment["employee_name"] == "Mary"

        assert client.delete(f"/api/payments/{payment['id']}").status_code == 200
        assert client.get(f"/api/payments/{payment['id']}").status_code == 404
        assert client.get(f"/api/transactions/{txn['id']}").json["transaction"]["balance_due_cents"] == 1000

    def test_non_positive_amount_is_400(self, client, db_session):
        assert client.post("/api/payments", json={"amount_cents": -5}).status_code == 400
        assert client.post("/api/payments", json={}).status_code == 400


class TestPeopleApi:

    def test_statement(self, client, make_product, make_person):
        ann = make_person("Ann")
        product = make_product(stock=5, price_cents=5000)
        client.post("/api/transactions", json={
            "items": [{"product_id": product.id, "quantity": 1}],
            "person_id": ann.id,
            "transaction_date": "2024-01-01T12:00:00Z",
        })
        client.post("/api/payments", json={
            "amount_cents": 3000, "person_id": ann.id, "payment_date": "2024-01-02T12:00:00Z",
        })

        resp = client.get(f"/api/people/{ann.id}/statement")

        assert resp.status_code == 200
        items = resp.json["statement"]["items"]
        assert [i["running_balance_cents"] for i in items] == [-2000, -5000]

        resp = client.get(f"/api/people/{ann.id}")
        assert resp.json["person"]["balance_cents"] == -2000

    def test_date_only_to_includes_whole_day(self, client, make_product, make_person):
        ann = make_person("Ann")
        product = make_product(stock=5, price_cents=5000)
        client.post("/api/transactions", json={
            "items": [{"product_id": product.id, "quantity": 1}],
            "person_id": ann.id,
            "transaction_date": "2024-01-31T18:30:00Z",
        })

        resp = client.get(f"/api/people/{ann.id}/statement?to=2024-01-31")
        assert len(resp.json["statement"]["items"]) == 1

        resp = client.get(f"/api/people/{ann.id}/statement?to=2024-01-31T12:00:00Z")
        assert resp.json["statement"]["items"] == []

    def test_bad_statement_window_is_400(self, client, make_person):
        ann = make_person("Ann")
        assert client.get(f"/api/people/{ann.id}/statement?from=yesterday").status_code == 400

    def test_ambiguous_customer_is_409(self, client, make_person, make_product):
        first = make_person("Ann")
        second = make_person("Ann")
        product = make_product(stock=5)

        resp = client.post("/api/transactions", json={
            "items": [{"product_id": product.id, "quantity": 1}],
            "customer_name": "ann",
        })

        assert resp.status_code == 409
        assert resp.json["details"]["candidate_ids"] == [first.id, second.id]

    def test_create_list_and_login(self, client, db_session):
        resp = client.post("/api/people", json={
            "name": "Mary", "role": "employee", "username": "mary", "password": "pw", "passcode": "1234",
        })
        assert resp.status_code == 201
        assert resp.json["person"]["has_passcode"] is True
        assert "password_hash" not in resp.json["person"]

        resp = client.get("/api/people?role=EMPLOYEE")
        assert [p["name"] for p in resp.json["people"]] == ["Mary"]

        assert client.post("/api/people/login", json={"username": "mary", "password": "pw"}).status_code == 200
        assert client.post("/api/people/login", json={"passcode": "1234"}).status_code == 200
        assert client.post("/api/people/login", json={"username": "mary", "password": "no"}).status_code == 401
        assert client.post("/api/people/login", json={}).status_code == 400

    def test_update_and_delete(self, client, make_person):
        ann = make_person("Ann")

        resp = client.put(f"/api/people/{ann.id}", json={"phone": "555-0101"})
        assert resp.status_code == 200
        assert resp.json["person"]["phone"] == "555-0101"

        assert client.delete(f"/api/people/{ann.id}").status_code == 200
        assert client.get(f"/api/people/{ann.id}").status_code == 404

    def test_sync(self, client, db_session):
        resp = client.post("/api/people/sync")
        assert resp.status_code == 200
        assert resp.json["result"]["linked"] == 0


class TestPurchasesApi:

    def test_create_and_get(self, client, make_product):
        product = make_product(stock=10, cost_cents=500)

        resp = client.post("/api/purchases", json={
            "supplier_name": "Acme",
            "items": [{"product_id": product.id, "quantity": 10, "unit_cost_cents": 700}],
        })

        assert resp.status_code == 201
        purchase = resp.json["purchase"]
        assert purchase["total_cents"] == 7000

        resp = client.get(f"/api/purchases/{purchase['id']}")
        assert resp.status_code == 200
        assert resp.json["purchase"]["items"][0]["unit_cost_cents"] == 700
        assert client.get("/api/purchases").json["count"] == 1

    def test_unknown_product_is_404(self, client, db_session):
        resp = client.post("/api/purchases", json={
            "items": [{"product_id": 777, "quantity": 1, "unit_cost_cents": 100}],
        })
        assert resp.status_code == 404


class TestLogsApi:

    def test_actor_recorded(self, client, make_product):
        product = make_product(stock=5)
        client.post("/api/transactions", json={
            "items": [{"product_id": product.id, "quantity": 1}],
        }, headers=ACTOR)

        resp = client.get("/api/logs?entity_type=Transaction")

        assert resp.status_code == 200
        log = resp.json["logs"][0]
        assert log["action"] == "Sale"
        assert log["actor_name"] == "Mary"
        assert log["changes"]["total_cents"] == 1000

    def test_system_when_no_actor(self, client, db_session):
        person_service.create_person(name="Joe", role=ROLE_EMPLOYEE)
        resp = client.post("/api/people/sync")
        assert resp.status_code == 200

        client.post("/api/payments", json={"amount_cents": 100, "customer_name": "Walk In"})
        log = client.get("/api/logs?entity_type=Payment").json["logs"][0]
        assert log["actor_name"] == "System"
