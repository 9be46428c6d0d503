import uuid
from datetime import timedelta

from sqlalchemy import select, update

from app.core.security import create_access_token
from app.models.product import Product

BASE = "/api/v1/stock-reconciliations"


async def create_draft(client, headers, **payload):
    payload.setdefault("title", "Monthly Count")
    resp = await client.post(BASE, json=payload, headers=headers)
    assert resp.status_code == 201, resp.text
    return resp.json()["data"]


async def test_requires_bearer_token(client):
    resp = await client.get(BASE)
    assert resp.status_code in (401, 403)


async def test_rejects_bad_and_expired_tokens(client, admin):
    resp = await client.get(BASE, headers={"Authorization": "Bearer not-a-jwt"})
    assert resp.status_code == 401
    assert resp.json()["success"] is False
    assert resp.json()["error_kind"] == "Unauthenticated"
    assert resp.headers["www-authenticate"] == "Bearer"

    expired = create_access_token(admin.user_id, admin.role, expires_delta=timedelta(minutes=-5))
    resp = await client.get(BASE, headers={"Authorization": f"Bearer {expired}"})
    assert resp.status_code == 401


async def test_full_workflow(client, async_session_maker, admin, manager, auth_headers, make_product):
    a = await make_product(name="Filter A", sku="FLT-A", stock=50)
    b = await make_product(name="Filter B", sku="FLT-B", stock=10)
    as_manager, as_admin = auth_headers(manager), auth_headers(admin)

    draft = await create_draft(client, as_manager, description="Aisle 4")
    assert draft["status"] == "DRAFT"
    assert draft["allowed_actions"] == ["edit", "submit", "delete"]
    rid = draft["id"]

    resp = await client.post(
        f"{BASE}/{rid}/items",
        json={"product_id": str(a.id), "physical_count": 47, "discrepancy_reason": "damage"},
        headers=as_manager,
    )
    assert resp.status_code == 201, resp.text
    item = resp.json()["data"]
    assert item["discrepancy"] == -3
    assert item["verified"] is True

    resp = await client.post(f"{BASE}/{rid}/items", json={"product_id": str(b.id)}, headers=as_manager)
    assert resp.status_code == 201

    resp = await client.get(f"{BASE}/{rid}/summary", headers=as_manager)
    summary = resp.json()["data"]
    assert (summary["net_units"], summary["shortage_units"], summary["overage_units"]) == (-3, 3, 0)
    assert summary["total_items"] == 2

    resp = await client.post(f"{BASE}/{rid}/submit", headers=as_manager)
    assert resp.json()["data"]["status"] == "PENDING_APPROVAL"

    resp = await client.post(f"{BASE}/{rid}/approve", headers=as_manager)
    assert resp.status_code == 403
    assert resp.json()["error_kind"] == "PermissionError"

    resp = await client.post(f"{BASE}/{rid}/approve", json={"notes": "ok"}, headers=as_admin)
    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["success"] is True
    assert body["data"]["status"] == "APPROVED"
    assert body["data"]["approved_by"] == str(admin.user_id)
    assert body["data"]["approved_at"] is not None

    async with async_session_maker() as sess:
        stock = await sess.scalar(select(Product.stock).where(Product.id == a.id))
    assert stock == 47


async def test_error_envelope_for_illegal_transition(client, admin, auth_headers, make_product):
    headers = auth_headers(admin)
    product = await make_product()
    draft = await create_draft(client, headers, items=[{"product_id": str(product.id)}])

    resp = await client.post(f"{BASE}/{draft['id']}/approve", headers=headers)
    assert resp.status_code == 409
    body = resp.json()
    assert body["success"] is False
    assert body["error_kind"] == "InvalidStateTransition"
    assert "message" in body


async def test_submit_without_items_is_validation_error(client, manager, auth_headers):
    headers = auth_headers(manager)
    draft = await create_draft(client, headers)

    resp = await client.post(f"{BASE}/{draft['id']}/submit", headers=headers)
    assert resp.status_code == 400
    assert resp.json()["error_kind"] == "ValidationError"


async def test_duplicate_item(client, manager, auth_headers, make_product):
    headers = auth_headers(manager)
    product = await make_product()
    draft = await create_draft(client, headers, items=[{"product_id": str(product.id)}])

    resp = await client.post(f"{BASE}/{draft['id']}/items", json={"product_id": str(product.id)}, headers=headers)
    assert resp.status_code == 409
    assert resp.json()["error_kind"] == "DuplicateItem"


async def test_unknown_reconciliation(client, admin, auth_headers):
    resp = await client.get(f"{BASE}/{uuid.uuid4()}", headers=auth_headers(admin))
    assert resp.status_code == 404
    assert resp.json()["error_kind"] == "NotFound"


async def test_stale_version_is_conflict(client, manager, auth_headers):
    headers = auth_headers(manager)
    draft = await create_draft(client, headers)

    resp = await client.put(f"{BASE}/{draft['id']}", json={"notes": "one", "expected_version": 1}, headers=headers)
    assert resp.status_code == 200
    assert resp.json()["data"]["version"] == 2

    resp = await client.put(f"{BASE}/{draft['id']}", json={"notes": "two", "expected_version": 1}, headers=headers)
    assert resp.status_code == 409
    assert resp.json()["error_kind"] == "ConcurrencyConflict"


async def test_malformed_request_uses_envelope(client, manager, auth_headers):
    resp = await client.post(BASE, json={"description": "no title"}, headers=auth_headers(manager))
    assert resp.status_code == 400
    body = resp.json()
    assert body["error_kind"] == "ValidationError"
    assert any(err["field"].endswith("title") for err in body["details"]["errors"])


async def test_reject_and_item_edits(client, admin, manager, auth_headers, make_product):
    as_manager, as_admin = auth_headers(manager), auth_headers(admin)
    product = await make_product(stock=5)
    draft = await create_draft(client, as_manager, items=[{"product_id": str(product.id)}])
    rid, item_id = draft["id"], draft["items"][0]["id"]

    resp = await client.patch(
        f"{BASE}/{rid}/items/{item_id}", json={"physical_count": 7, "verified": False}, headers=as_manager
    )
    assert resp.status_code == 200
    assert resp.json()["data"]["discrepancy"] == 2
    assert resp.json()["data"]["verified"] is True

    await client.post(f"{BASE}/{rid}/submit", headers=as_manager)

    resp = await client.post(f"{BASE}/{rid}/reject", json={}, headers=as_admin)
    assert resp.status_code == 400

    resp = await client.post(f"{BASE}/{rid}/reject", json={"reason": "Recount"}, headers=as_admin)
    data = resp.json()["data"]
    assert data["status"] == "REJECTED"
    assert data["rejection_reason"] == "Recount"

    resp = await client.delete(f"{BASE}/{rid}/items/{item_id}", headers=as_manager)
    assert resp.status_code == 409


async def test_delete_draft(client, manager, auth_headers):
    headers = auth_headers(manager)
    draft = await create_draft(client, headers)

    resp = await client.delete(f"{BASE}/{draft['id']}", headers=headers)
    assert resp.status_code == 200
    resp = await client.get(f"{BASE}/{draft['id']}", headers=headers)
    assert resp.status_code == 404


async def test_list_pagination_and_scope(client, admin, staff, auth_headers):
    for i in range(3):
        await create_draft(client, auth_headers(staff), title=f"Staff {i}")
    await create_draft(client, auth_headers(admin), title="Admin only")

    resp = await client.get(BASE, params={"size": 2, "sort_by": "title", "sort_order": "asc"}, headers=auth_headers(staff))
    page = resp.json()["data"]
    assert page["total"] == 3
    assert page["pages"] == 2
    assert page["has_next"] is True
    assert page["has_prev"] is False
    assert [r["title"] for r in page["items"]] == ["Staff 0", "Staff 1"]

    resp = await client.get(BASE, params={"search": "admin"}, headers=auth_headers(admin))
    assert resp.json()["data"]["total"] == 1

    resp = await client.get(BASE, params={"sort_by": "version"}, headers=auth_headers(admin))
    assert resp.status_code == 400


async def test_meta_and_product_search(client, staff, auth_headers, make_product):
    headers = auth_headers(staff)
    await make_product(name="Water Filter", sku="WF-100")

    resp = await client.get(f"{BASE}/meta/discrepancy-reasons", headers=headers)
    values = [r["value"] for r in resp.json()["data"]]
    assert values == ["damage", "miscount", "theft", "expiry", "other"]

    resp = await client.get(f"{BASE}/products/search", params={"q": "wf-"}, headers=headers)
    assert [p["sku"] for p in resp.json()["data"]] == ["WF-100"]


async def test_oversold_product_is_a_typed_error(client, async_session_maker, manager, auth_headers, make_product):
    headers = auth_headers(manager)
    oversold = await make_product(name="Water Filter", sku="WF-100")
    async with async_session_maker() as sess:
        await sess.execute(update(Product).where(Product.id == oversold.id).values(stock=-2))
        await sess.commit()

    resp = await client.get(f"{BASE}/products/search", params={"q": "filter"}, headers=headers)
    assert resp.status_code == 200
    assert resp.json()["data"] == []

    draft = await create_draft(client, headers)
    resp = await client.post(
        f"{BASE}/{draft['id']}/items", json={"product_id": str(oversold.id)}, headers=headers
    )
    assert resp.status_code == 400
    body = resp.json()
    assert body["error_kind"] == "ValidationError"
    assert body["details"] == {"product_id": str(oversold.id), "stock": -2}
