import os
import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault("DATA_DIR", str(ROOT / "data"))

from epp_ledger import create_app
from epp_ledger.core.config import settings
from epp_ledger.core.security import issue_token
from epp_ledger.db.session import get_db

SITE = {"X-Site-Id": "site-1", "X-Actor-Id": "supervisor"}


@pytest.fixture()
def client(monkeypatch):
    monkeypatch.setattr(settings, "API_KEY", "")
    # One shared connection so the app's worker threads see the same in-memory database.
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    TestingSessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    app = create_app(bind=engine)

    def override_get_db():
        db = TestingSessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client


def _seed(client, stock=10):
    item = client.post(
        "/api/v1/inventory/items",
        json={"name": "Safety helmet", "initial_stock": stock, "useful_life_months": 12},
        headers=SITE,
    )
    assert item.status_code == 201, item.text
    employee = client.post("/api/v1/employees", json={"full_name": "Rosa Huaman"}, headers=SITE)
    assert employee.status_code == 201, employee.text
    return item.json(), employee.json()


def test_site_header_is_required(client):
    response = client.get("/api/v1/inventory/items")
    assert response.status_code == 400
    assert response.json()["code"] == "http_error"


def test_delivery_round_trip_over_http(client):
    item, employee = _seed(client)

    created = client.post(
        "/api/v1/deliveries",
        json={
            "employee_id": employee["id"],
            "delivery_date": "2024-01-15",
            "lines": [{"item_id": item["id"], "quantity": 2}],
        },
        headers=SITE,
    )
    assert created.status_code == 201, created.text
    delivery = created.json()
    assert delivery["status"] == "PENDING"
    assert delivery["signature_stage"] == "PENDING"
    assert delivery["total_units"] == 2
    assert delivery["delivered_by"] == "supervisor"
    assert delivery["lines"][0]["item_name"] == "Safety helmet"

    stock = client.get(f"/api/v1/inventory/items/{item['id']}", headers=SITE).json()
    assert stock["current_stock"] == 8

    signed = client.post(
        f"/api/v1/deliveries/{delivery['id']}/sign/employee",
        json={"signature": "data:image/png;base64,AAA"},
        headers=SITE,
    )
    assert signed.json()["signature_stage"] == "PENDING_AWAITING_RESPONSIBLE"

    final = client.post(
        f"/api/v1/deliveries/{delivery['id']}/sign/responsible",
        json={"signature": "data:image/png;base64,BBB", "responsible_name": "Carla Rojas"},
        headers=SITE,
    )
    assert final.status_code == 200
    assert final.json()["status"] == "SIGNED"

    cancel = client.post(f"/api/v1/deliveries/{delivery['id']}/cancel", json={"reason": "late"}, headers=SITE)
    assert cancel.status_code == 409
    assert cancel.json()["code"] == "invalid_state"

    movements = client.get(f"/api/v1/inventory/items/{item['id']}/movements", headers=SITE).json()
    assert [m["movement_type"] for m in movements] == ["DELIVERY_OUT", "INBOUND_SUPPLY"]

    signed_list = client.get("/api/v1/deliveries/signed", headers=SITE).json()
    assert [d["id"] for d in signed_list] == [delivery["id"]]
    history = client.get(f"/api/v1/employees/{employee['id']}/deliveries", headers=SITE).json()
    assert [d["id"] for d in history] == [delivery["id"]]
    assignments = client.get(f"/api/v1/deliveries/{delivery['id']}/assignments", headers=SITE).json()
    assert assignments[0]["renewal_date"] == "2025-01-15"
    assert assignments[0]["status"] == "ACTIVE"

    stats = client.get("/api/v1/deliveries/stats", headers=SITE).json()
    assert stats["signed"] == 1 and stats["total_units"] == 2


def test_insufficient_stock_maps_to_conflict(client):
    item, employee = _seed(client, stock=1)

    response = client.post(
        "/api/v1/deliveries",
        json={"employee_id": employee["id"], "lines": [{"item_id": item["id"], "quantity": 3}]},
        headers=SITE,
    )

    assert response.status_code == 409
    body = response.json()
    assert body["code"] == "insufficient_stock"
    assert body["details"]["shortfall"] == 2
    assert body["details"]["available"] == 1
    listing = client.get("/api/v1/deliveries", headers=SITE).json()
    assert listing["count"] == 0


def test_request_validation_uses_error_envelope(client):
    response = client.post("/api/v1/deliveries", json={"employee_id": 1, "lines": []}, headers=SITE)
    assert response.status_code == 422
    assert response.json()["code"] == "validation_error"


def test_unknown_filter_values_are_rejected(client):
    _, employee = _seed(client)

    for path in (
        "/api/v1/deliveries?status=bogus",
        f"/api/v1/employees/{employee['id']}/deliveries?status=bogus",
        "/api/v1/inventory/items?item_class=bogus",
    ):
        response = client.get(path, headers=SITE)
        assert response.status_code == 422, path
        assert response.json()["code"] == "validation_error"

    filtered = client.get("/api/v1/deliveries?status=PENDING", headers=SITE)
    assert filtered.status_code == 200


def test_open_mode_cannot_erase(client):
    item, employee = _seed(client)
    delivery = client.post(
        "/api/v1/deliveries",
        json={"employee_id": employee["id"], "lines": [{"item_id": item["id"], "quantity": 1}]},
        headers=SITE,
    ).json()

    denied = client.delete(f"/api/v1/deliveries/{delivery['id']}", headers=SITE)

    assert denied.status_code == 403
    assert client.get(f"/api/v1/deliveries/{delivery['id']}", headers=SITE).status_code == 200


def test_correction_requires_reason(client):
    item, _ = _seed(client)

    missing = client.post(
        f"/api/v1/inventory/items/{item['id']}/adjust",
        json={"quantity": 2, "movement_type": "CORRECTION_OUT"},
        headers=SITE,
    )
    assert missing.status_code == 422

    corrected = client.post(
        f"/api/v1/inventory/items/{item['id']}/adjust",
        json={"quantity": 2, "movement_type": "CORRECTION_OUT", "reason": "Physical count"},
        headers=SITE,
    )
    assert corrected.status_code == 201, corrected.text
    assert corrected.json()["balance_after"] == 8
    assert corrected.json()["signed_quantity"] == -2


def test_items_of_other_sites_are_not_visible(client):
    item, _ = _seed(client)
    response = client.get(f"/api/v1/inventory/items/{item['id']}", headers={"X-Site-Id": "site-2"})
    assert response.status_code == 404
    assert response.json()["code"] == "not_found"


def test_erase_requires_privileged_token(client, monkeypatch):
    monkeypatch.setattr(settings, "API_KEY", "service-key")
    headers = {**SITE, "X-API-Key": "service-key"}
    item, employee = _seed_with_headers(client, headers)
    delivery = client.post(
        "/api/v1/deliveries",
        json={"employee_id": employee["id"], "lines": [{"item_id": item["id"], "quantity": 4}]},
        headers=headers,
    ).json()

    plain = issue_token("clerk", site="site-1")
    denied = client.delete(
        f"/api/v1/deliveries/{delivery['id']}",
        headers={"Authorization": f"Bearer {plain}", "X-Site-Id": "site-1"},
    )
    assert denied.status_code == 403

    privileged = issue_token("admin", site="site-1", scope="deliveries:erase")
    erased = client.delete(
        f"/api/v1/deliveries/{delivery['id']}",
        headers={"Authorization": f"Bearer {privileged}", "X-Site-Id": "site-1"},
    )
    assert erased.status_code == 200
    assert erased.json() == {"status": "erased", "id": delivery["id"]}

    gone = client.get(f"/api/v1/deliveries/{delivery['id']}", headers=headers)
    assert gone.status_code == 404
    stock = client.get(f"/api/v1/inventory/items/{item['id']}", headers=headers).json()
    assert stock["current_stock"] == 10

    no_key = client.get("/api/v1/inventory/items", headers=SITE)
    assert no_key.status_code == 401


def test_renewal_endpoints(client):
    item, employee = _seed(client, stock=7)
    client.post(
        "/api/v1/deliveries",
        json={
            "employee_id": employee["id"],
            "delivery_date": "2020-01-15",
            "lines": [{"item_id": item["id"], "quantity": 2}],
        },
        headers=SITE,
    )

    pending = client.get("/api/v1/renewals", headers=SITE).json()
    assert len(pending) == 1
    assert pending[0]["urgency"] == "OVERDUE"
    assignment_id = pending[0]["assignment"]["id"]

    summary = client.get("/api/v1/renewals/summary", headers=SITE).json()
    assert summary["overdue"] == 1

    renewed = client.post(
        f"/api/v1/renewals/employees/{employee['id']}",
        json={"assignment_ids": [assignment_id]},
        headers=SITE,
    )
    assert renewed.status_code == 201, renewed.text
    assert renewed.json()["reason"] == "RENEWAL"
    assert renewed.json()["lines"][0]["replaces_assignment_id"] == assignment_id

    stock = client.get(f"/api/v1/inventory/items/{item['id']}", headers=SITE).json()
    assert stock["current_stock"] == 3
    assert client.get("/api/v1/renewals", headers=SITE).json() == []


def _seed_with_headers(client, headers):
    item = client.post(
        "/api/v1/inventory/items",
        json={"name": "Safety helmet", "initial_stock": 10},
        headers=headers,
    ).json()
    employee = client.post("/api/v1/employees", json={"full_name": "Rosa Huaman"}, headers=headers).json()
    return item, employee
