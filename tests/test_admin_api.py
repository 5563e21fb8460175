from sqlalchemy import select

from cardshop.models.card import Card, CardStatus
from cardshop.models.order import OrderStatus


async def _place(client, product_id, quantity=2):
    res = await client.post(
        "/orders",
        json={"product_id": product_id, "email": "buyer@example.com", "password": "secret123", "quantity": quantity},
    )
    assert res.status_code == 200, res.text
    return res.json()


async def _order_id(client, admin_headers, order_no):
    res = await client.get("/admin/orders", params={"order_no": order_no}, headers=admin_headers)
    return res.json()["items"][0]["id"]


# -------------------------
# Auth
# -------------------------
async def test_login_and_me(client, admin_user):
    res = await client.post("/auth/login", data={"username": "Admin@Shop.test", "password": "admin-pass-123"})
    assert res.status_code == 200
    token = res.json()["access_token"]

    me = await client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.status_code == 200
    assert me.json()["email"] == "admin@shop.test"
    assert me.json()["role"] == "admin"


async def test_login_rejects_bad_password(client, admin_user):
    res = await client.post("/auth/login", data={"username": "admin@shop.test", "password": "nope"})
    assert res.status_code == 401
    assert res.json() == {"error": "Invalid email or password"}


async def test_admin_routes_require_token(client):
    assert (await client.get("/admin/orders")).status_code == 401
    res = await client.get("/admin/orders", headers={"Authorization": "Bearer garbage"})
    assert res.status_code == 401
    assert res.json() == {"error": "Invalid or expired token"}


# -------------------------
# Orders
# -------------------------
async def test_list_and_detail(client, admin_headers, seed_product):
    pid = await seed_product(price="50.00", cards=3)
    order = await _place(client, pid)

    res = await client.get("/admin/orders", params={"status": "PENDING"}, headers=admin_headers)
    assert res.status_code == 200
    body = res.json()
    assert body["total"] == 1
    row = body["items"][0]
    assert row["order_no"] == order["order_no"]
    assert row["product"]["name"] == "Steam Key"
    assert row["amount"] == 100.0
    assert (row["cards_count"], row["reserved_cards_count"], row["sold_cards_count"]) == (2, 2, 0)

    res = await client.get("/admin/orders", params={"status": "COMPLETED"}, headers=admin_headers)
    assert res.json()["total"] == 0

    detail = await client.get(f"/admin/orders/{row['id']}", headers=admin_headers)
    assert detail.status_code == 200
    assert detail.json()["email"] == "buyer@example.com"

    missing = await client.get("/admin/orders/9999", headers=admin_headers)
    assert missing.status_code == 404


async def test_patch_closed_releases_cards(client, db, admin_headers, seed_product):
    pid = await seed_product(price="50.00", cards=3)
    order = await _place(client, pid)
    order_id = await _order_id(client, admin_headers, order["order_no"])

    res = await client.patch(f"/admin/orders/{order_id}", json={"status": "CLOSED"}, headers=admin_headers)

    assert res.status_code == 200
    assert res.json()["status"] == OrderStatus.CLOSED
    assert res.json()["cards_count"] == 0

    cards = (await db.execute(select(Card).where(Card.product_id == pid))).scalars().all()
    assert all(c.status == CardStatus.UNSOLD and c.order_id is None for c in cards)

    # all three cards are available again
    again = await _place(client, pid, quantity=3)
    assert again["amount"] == 150.0


async def test_patch_completed_then_closed_conflicts(client, admin_headers, seed_product):
    pid = await seed_product(cards=3)
    order = await _place(client, pid)
    order_id = await _order_id(client, admin_headers, order["order_no"])

    done = await client.patch(f"/admin/orders/{order_id}", json={"status": "COMPLETED"}, headers=admin_headers)
    assert done.status_code == 200
    assert done.json()["status"] == OrderStatus.COMPLETED
    assert done.json()["sold_cards_count"] == 2
    assert done.json()["paid_at"] is not None

    # repeating the same target is a no-op
    same = await client.patch(f"/admin/orders/{order_id}", json={"status": "COMPLETED"}, headers=admin_headers)
    assert same.status_code == 200

    res = await client.patch(f"/admin/orders/{order_id}", json={"status": "CLOSED"}, headers=admin_headers)
    assert res.status_code == 409
    assert res.json() == {"error": "Invalid status transition: COMPLETED -> CLOSED"}

    res = await client.delete(f"/admin/orders/{order_id}", headers=admin_headers)
    assert res.status_code == 409


async def test_patch_note_is_written_to_audit_log(client, admin_headers, seed_product, caplog):
    pid = await seed_product(cards=3)
    order = await _place(client, pid)
    order_id = await _order_id(client, admin_headers, order["order_no"])

    res = await client.patch(
        f"/admin/orders/{order_id}",
        json={"status": "COMPLETED", "note": "paid by bank transfer"},
        headers=admin_headers,
    )
    assert res.status_code == 200

    audit = [r for r in caplog.records if r.name == "shop.audit"]
    assert [r.getMessage() for r in audit] == ["order completed by admin"]
    assert audit[0].note == "paid by bank transfer"
    assert audit[0].order_id == order_id


async def test_patch_validation_errors_carry_details(client, admin_headers):
    res = await client.patch("/admin/orders/1", json={"status": "PENDING"}, headers=admin_headers)
    assert res.status_code == 400
    body = res.json()
    assert body["error"] == "Validation failed"
    assert body["details"]


async def test_delete_is_a_soft_close(client, admin_headers, seed_product):
    pid = await seed_product(cards=3)
    order = await _place(client, pid)
    order_id = await _order_id(client, admin_headers, order["order_no"])

    first = await client.delete(f"/admin/orders/{order_id}", headers=admin_headers)
    second = await client.delete(f"/admin/orders/{order_id}", headers=admin_headers)

    assert first.status_code == second.status_code == 200
    assert second.json()["status"] == OrderStatus.CLOSED
    assert (await client.get(f"/admin/orders/{order_id}", headers=admin_headers)).status_code == 200


async def test_patch_unknown_order(client, admin_headers):
    res = await client.patch("/admin/orders/4242", json={"status": "CLOSED"}, headers=admin_headers)
    assert res.status_code == 404
    assert res.json() == {"error": "Order not found"}


# -------------------------
# Cards
# -------------------------
async def test_import_list_and_delete_cards(client, admin_headers, seed_product):
    pid = await seed_product(cards=0)

    res = await client.post(
        f"/admin/products/{pid}/cards",
        json={"contents": ["  AAA-1 ", "AAA-2", "AAA-1", "", "   "]},
        headers=admin_headers,
    )
    assert res.status_code == 201
    assert res.json() == {"imported": 2, "total": 2}

    listing = await client.get(f"/admin/products/{pid}/cards", headers=admin_headers)
    assert listing.status_code == 200
    assert listing.json()["stats"] == {"UNSOLD": 2, "RESERVED": 0, "SOLD": 0}
    assert sorted(c["content"] for c in listing.json()["cards"]) == ["AAA-1", "AAA-2"]

    order = await _place(client, pid, quantity=1)
    listing = await client.get(f"/admin/products/{pid}/cards", params={"status": "RESERVED"}, headers=admin_headers)
    reserved = listing.json()["cards"]
    assert len(reserved) == 1
    assert reserved[0]["order_no"] == order["order_no"]

    res = await client.delete(f"/admin/cards/{reserved[0]['id']}", headers=admin_headers)
    assert res.status_code == 400
    assert res.json() == {"error": "Only unsold cards can be deleted"}

    unsold = await client.get(f"/admin/products/{pid}/cards", params={"status": "UNSOLD"}, headers=admin_headers)
    res = await client.delete(f"/admin/cards/{unsold.json()['cards'][0]['id']}", headers=admin_headers)
    assert res.status_code == 200

    res = await client.delete("/admin/cards/99999", headers=admin_headers)
    assert res.status_code == 404


async def test_import_rejects_blank_and_oversized_batches(client, admin_headers, seed_product):
    pid = await seed_product(cards=0)

    res = await client.post(f"/admin/products/{pid}/cards", json={"contents": [" ", ""]}, headers=admin_headers)
    assert res.status_code == 400
    assert res.json() == {"error": "No valid card contents to import"}

    res = await client.post(
        f"/admin/products/{pid}/cards", json={"contents": [f"C-{i}" for i in range(501)]}, headers=admin_headers
    )
    assert res.status_code == 400
    assert res.json()["error"] == "Validation failed"

    res = await client.post("/admin/products/9999/cards", json={"contents": ["X"]}, headers=admin_headers)
    assert res.status_code == 404


# -------------------------
# Products
# -------------------------
async def test_product_admin(client, admin_headers):
    res = await client.post(
        "/admin/products",
        json={"name": "Gift Card", "slug": "gift-card", "price": "25.50", "max_quantity": 5},
        headers=admin_headers,
    )
    assert res.status_code == 201
    product = res.json()
    assert product["price"] == 25.5
    assert product["status"] == "ACTIVE"

    dup = await client.post(
        "/admin/products",
        json={"name": "Other", "slug": "gift-card", "price": "1.00"},
        headers=admin_headers,
    )
    assert dup.status_code == 409

    await client.post(f"/admin/products/{product['id']}/cards", json={"contents": ["G-1", "G-2"]}, headers=admin_headers)
    listing = await client.get("/admin/products", headers=admin_headers)
    assert [(p["slug"], p["stock"]) for p in listing.json()] == [("gift-card", 2)]

    res = await client.patch(
        f"/admin/products/{product['id']}/status", json={"status": "INACTIVE"}, headers=admin_headers
    )
    assert res.status_code == 200
    assert res.json()["status"] == "INACTIVE"

    # inactive products cannot be ordered
    res = await client.post(
        "/orders",
        json={"product_id": product["id"], "email": "b@example.com", "password": "secret123", "quantity": 1},
    )
    assert res.status_code == 404
