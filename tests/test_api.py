"""
API Tests
=========
HTTP layer over in-memory services: status codes, payload shapes and the
error envelope.
"""

import pytest
from fastapi.testclient import TestClient

from api.main import create_app
from authority.models import MatchMethod

ACTOR = {"X-Actor-Id": "reviewer-1"}

SCENARIO_CSV = "sku,ean,name,price\nABC-1,04006501003638,Sterile Gloves M,12.50\n"


@pytest.fixture
def client(services):
    return TestClient(create_app(services))


def test_root(client):
    response = client.get("/")
    assert response.status_code == 200
    data = response.json()
    assert "message" in data
    assert data["endpoints"]["triage"] == "/api/v1/triage"
    print("✓ Root endpoint OK")


def test_health(client):
    response = client.get("/api/v1/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert data["repository"] == "ok"
    assert data["gdsn"] == "ok"
    assert data["gdsn_provider"] == "mock"
    print(f"✓ Health check OK - GDSN: {data['gdsn_provider']}")


# ============================================================================
# IMPORTS
# ============================================================================

def test_import_rows(client, make_product):
    existing = make_product("Sterile Gloves (M)", gtin="04006501003638")

    response = client.post("/api/v1/imports/SUP-1/rows", json={
        "rows": [
            {"sku": "ABC-1", "ean": "04006501003638", "name": "Sterile Gloves M", "price": "12.50"},
            {"sku": "NO-NAME"},
        ],
        "options": {"auto_enrich": False},
    })

    assert response.status_code == 200
    data = response.json()
    assert data["run_id"]
    assert data["total_rows"] == 2
    assert data["success_count"] == 1
    assert data["failed_count"] == 1
    first, second = data["items"]
    assert first["product_id"] == existing.id
    assert first["match_method"] == MatchMethod.GTIN_EXACT.value
    assert first["state"] == "DONE"
    assert not second["success"]
    assert second["errors"]

    runs = client.get("/api/v1/imports/runs", params={"supplier_id": "SUP-1"}).json()
    assert len(runs) == 1
    assert runs[0]["id"] == data["run_id"]
    assert runs[0]["status"] == "PARTIAL"
    assert runs[0]["source"] == "api"
    assert client.get("/api/v1/imports/runs", params={"supplier_id": "OTHER"}).json() == []


def test_import_rows_unknown_integration_type(client):
    response = client.post("/api/v1/imports/SUP-1/rows", json={
        "rows": [{"name": "Gauze"}],
        "options": {"integration_type": "FAX"},
    })
    assert response.status_code == 422
    assert "FAX" in response.json()["detail"]


def test_import_csv_upload(client, repository):
    response = client.post(
        "/api/v1/imports/SUP-1/csv",
        files={"file": ("catalog.csv", SCENARIO_CSV, "text/csv")},
        data={"auto_enrich": "false"},
    )

    assert response.status_code == 200
    row = response.json()["items"][0]
    assert row["created_product"]
    assert row["match_confidence"] == 0.8
    assert row["needs_review"]

    item = repository.get_supplier_item(row["supplier_item_id"])
    assert item.integration_type.value == "CSV"
    runs = client.get("/api/v1/imports/runs").json()
    assert runs[0]["source"] == "csv:catalog.csv"


def test_import_csv_empty_file(client):
    response = client.post(
        "/api/v1/imports/SUP-1/csv",
        files={"file": ("empty.csv", b"", "text/csv")},
    )
    assert response.status_code == 400
    assert response.json()["detail"] == "Uploaded file is empty"


# ============================================================================
# TRIAGE
# ============================================================================

def test_triage_list_and_stats(client, make_product, make_item):
    product = make_product("Surgical Gloves Size M", gtin="4006501003638")
    flagged = make_item(product.id, supplier_id="SUP-1")
    make_item(product.id, supplier_id="SUP-2", needs_review=False, match_confidence=1.0,
              match_method=MatchMethod.GTIN_EXACT)

    response = client.get("/api/v1/triage", params={"issue_type": "needs-review", "limit": 10})
    assert response.status_code == 200
    page = response.json()
    assert page["total"] == 1
    assert page["limit"] == 10
    assert page["items"][0]["id"] == flagged.id
    assert page["items"][0]["product_name"] == "Surgical Gloves Size M"
    assert page["items"][0]["duplicate_count"] == 1

    stats = client.get("/api/v1/triage/stats").json()
    assert stats["total"] == 1
    assert stats["fuzzy_match"] == 1
    assert stats["no_gtin"] == 0


def test_triage_rejects_bad_query(client):
    assert client.get("/api/v1/triage", params={"issue_type": "everything"}).status_code == 422
    assert client.get("/api/v1/triage", params={"limit": 501}).status_code == 422


def test_confirm_requires_actor(client, make_product, make_item):
    item = make_item(make_product("Gloves").id)

    response = client.post(f"/api/v1/triage/{item.id}/confirm")

    assert response.status_code == 400
    assert response.json()["detail"] == "X-Actor-Id header is required"


def test_confirm(client, make_product, make_item):
    item = make_item(make_product("Gloves").id)

    response = client.post(f"/api/v1/triage/{item.id}/confirm", headers=ACTOR)

    assert response.status_code == 200
    data = response.json()
    assert data["changed"]
    assert not data["supplier_item"]["needs_review"]
    assert data["supplier_item"]["matched_by"] == "reviewer-1"


def test_confirm_unknown_item(client):
    response = client.post("/api/v1/triage/missing/confirm", headers=ACTOR)

    assert response.status_code == 404
    assert response.json()["error"] == "Not found"
    assert response.json()["status_code"] == 404


def test_reassign_and_conflict(client, make_product, make_item):
    first = make_product("Gloves S")
    second = make_product("Gloves M")
    item = make_item(first.id, supplier_id="SUP-1")

    moved = client.post(f"/api/v1/triage/{item.id}/reassign", json={"product_id": second.id}, headers=ACTOR)
    assert moved.status_code == 200
    assert moved.json()["product_id"] == second.id
    assert moved.json()["supplier_item"]["match_method"] == "MANUAL"

    other = make_item(first.id, supplier_id="SUP-1")
    conflict = client.post(f"/api/v1/triage/{other.id}/reassign", json={"product_id": second.id}, headers=ACTOR)
    assert conflict.status_code == 409
    assert conflict.json()["error"] == "Conflict"


def test_create_product_endpoint(client, repository, make_product, make_item):
    item = make_item(make_product("Unknown").id)

    response = client.post(
        f"/api/v1/triage/{item.id}/create-product",
        json={"name": "  Cotton pads  ", "brand": "SoftCo"},
        headers=ACTOR,
    )

    assert response.status_code == 200
    data = response.json()
    assert data["created_product"]
    product = repository.find_product_by_id(data["product_id"])
    assert product.name == "Cotton pads"
    assert product.brand == "SoftCo"

    invalid = client.post(
        f"/api/v1/triage/{item.id}/create-product",
        json={"name": "Bad", "gtin": "12AB"},
        headers=ACTOR,
    )
    assert invalid.status_code == 422
    assert invalid.json()["error"] == "Validation failed"


def test_ignore(client, repository, make_product, make_item):
    item = make_item(make_product("Gloves").id)

    response = client.post(f"/api/v1/triage/{item.id}/ignore", headers=ACTOR)

    assert response.status_code == 200
    assert not response.json()["supplier_item"]["is_active"]
    assert not repository.get_supplier_item(item.id).is_active
    assert client.get("/api/v1/triage").json()["total"] == 0


# ============================================================================
# PRODUCTS
# ============================================================================

def test_product_search_and_get(client, make_product):
    gloves = make_product("Surgical Gloves Size M", gtin="4006501003638")
    make_product("Cotton pads")

    found = client.get("/api/v1/products/search", params={"q": "gloves"}).json()
    assert [p["id"] for p in found] == [gloves.id]

    response = client.get(f"/api/v1/products/{gloves.id}")
    assert response.status_code == 200
    assert response.json()["gtin"] == "4006501003638"
    assert response.json()["is_gs1_product"]

    assert client.get("/api/v1/products/missing").status_code == 404


def test_merge_endpoint(client, repository, make_product, make_item):
    source = make_product("Gauze")
    target = make_product("Gauze swabs")
    make_item(source.id, supplier_id="SUP-1")

    response = client.post(
        "/api/v1/products/merge",
        json={"source_product_id": source.id, "target_product_id": target.id},
        headers=ACTOR,
    )

    assert response.status_code == 200
    data = response.json()
    assert data["moved_supplier_items"] == 1
    assert data["orphaned_practice_item_ids"] == []
    assert repository.find_product_by_id(source.id) is None
    print("✓ Merge endpoint folded the duplicate")


def test_self_merge_rejected(client, make_product):
    product = make_product("Gauze")

    response = client.post(
        "/api/v1/products/merge",
        json={"source_product_id": product.id, "target_product_id": product.id},
        headers=ACTOR,
    )

    assert response.status_code == 422
    assert response.json()["error"] == "Merge precondition failed"
