from decimal import Decimal

from backoffice import models
from conftest import make_order, make_product


def new_product(category, **overrides):
    body = {
        "name": "Lemonade",
        "price": "3.20",
        "stock": 12,
        "categoryId": category.id,
        "barcode": "999",
        "images": ["https://img.test/lemonade.png"],
    }
    body.update(overrides)
    return body


def names(response):
    return [p["name"] for p in response.json()["products"]]


def test_list_is_public_and_paginated(client, products):
    response = client.get("/api/products", params={"limit": 2, "sortBy": "name", "sortOrder": "asc"})

    assert response.status_code == 200
    body = response.json()
    assert names(response) == ["Cola", "Juice"]
    assert body["totalProducts"] == 3
    assert body["totalPages"] == 2
    assert body["hasNextPage"] is True
    assert body["hasPrevPage"] is False

    second = client.get("/api/products", params={"limit": 2, "page": 2, "sortBy": "name", "sortOrder": "asc"})
    assert names(second) == ["Water"]
    assert second.json()["hasNextPage"] is False


def test_search_matches_name_barcode_and_category(client, products):
    assert names(client.get("/api/products", params={"query": "col"})) == ["Cola"]
    assert names(client.get("/api/products", params={"query": "222"})) == ["Water"]
    assert len(names(client.get("/api/products", params={"query": "drinks"}))) == 3


def test_price_and_stock_filters(client, products):
    cheap = client.get("/api/products", params={"maxPrice": "8", "sortBy": "price", "sortOrder": "asc"})
    assert names(cheap) == ["Water", "Juice"]

    assert names(client.get("/api/products", params={"minPrice": "9"})) == ["Cola"]
    assert set(names(client.get("/api/products", params={"stock": "lowStock"}))) == {"Cola", "Juice"}
    assert names(client.get("/api/products", params={"stock": "outOfStock"})) == []


def test_list_rejects_unknown_sort_and_large_pages(client, products):
    assert client.get("/api/products", params={"sortBy": "colour"}).status_code == 422
    assert client.get("/api/products", params={"limit": 101}).status_code == 422


def test_create_product(client, category, admin_headers):
    response = client.post("/api/products", json=new_product(category), headers=admin_headers)

    assert response.status_code == 201
    body = response.json()
    assert body["id"].startswith("prod_")
    assert Decimal(body["price"]) == Decimal("3.20")
    assert body["category"]["name"] == "Drinks"


def test_create_product_checks(client, category, products, admin_headers, staff_headers):
    assert client.post("/api/products", json=new_product(category), headers=staff_headers).status_code == 403
    assert client.post("/api/products", json=new_product(category, barcode="111"), headers=admin_headers).status_code == 409
    assert client.post("/api/products", json=new_product(category, categoryId="cat_x"), headers=admin_headers).status_code == 400
    assert client.post("/api/products", json=new_product(category, images=[]), headers=admin_headers).status_code == 422
    assert client.post("/api/products", json=new_product(category, name="ab"), headers=admin_headers).status_code == 422
    assert client.post("/api/products", json=new_product(category, price="-1"), headers=admin_headers).status_code == 422


def test_get_product(client, products):
    cola = products["cola"]
    assert client.get(f"/api/products/{cola.id}").json()["barcode"] == "111"
    assert client.get("/api/products/prod_missing").status_code == 404


def test_update_product(client, db, products, admin_headers):
    cola = products["cola"]
    response = client.patch(f"/api/products/{cola.id}", json={"price": "11.50", "stock": 8}, headers=admin_headers)

    assert response.status_code == 200
    assert Decimal(response.json()["price"]) == Decimal("11.50")
    movement = db.query(models.StockMovement).filter_by(product_id=cola.id).one()
    assert (movement.type, movement.previous_stock, movement.new_stock) == ("set", 5, 8)


def test_update_product_checks(client, products, admin_headers):
    cola = products["cola"]
    assert client.patch(f"/api/products/{cola.id}", json={}, headers=admin_headers).status_code == 400
    assert client.patch(f"/api/products/{cola.id}", json={"barcode": "222"}, headers=admin_headers).status_code == 409
    assert client.patch(f"/api/products/{cola.id}", json={"barcode": "111"}, headers=admin_headers).status_code == 200
    assert client.patch(f"/api/products/{cola.id}", json={"categoryId": "cat_x"}, headers=admin_headers).status_code == 400
    assert client.patch("/api/products/prod_missing", json={"stock": 1}, headers=admin_headers).status_code == 404


def test_delete_product(client, db, products, admin_headers):
    water = products["water"]
    assert client.delete(f"/api/products/{water.id}", headers=admin_headers).status_code == 204
    assert client.get(f"/api/products/{water.id}").status_code == 404


def test_sold_product_cannot_be_deleted(client, db, products, admin_headers):
    cola = products["cola"]
    make_order(db, "12.00", lines=[(cola, 1, "10.00")])

    response = client.delete(f"/api/products/{cola.id}", headers=admin_headers)
    assert response.status_code == 409
    assert db.query(models.Product).filter_by(id=cola.id).count() == 1


def test_bulk_delete_skips_sold_products(client, db, products, admin_headers):
    cola, water = products["cola"], products["water"]
    make_order(db, "12.00", lines=[(cola, 1, "10.00")])

    response = client.post(
        "/api/products/bulk-delete",
        json={"productIds": [cola.id, water.id]},
        headers=admin_headers
    )

    assert response.status_code == 200
    assert response.json() == {"affected": 1, "skipped": [cola.id]}
    assert db.query(models.Product).count() == 2


def test_bulk_update(client, db, category, products, admin_headers):
    cola, water = products["cola"], products["water"]
    response = client.post(
        "/api/products/bulk-update",
        json={"productIds": [cola.id, water.id], "price": "1.00", "stock": 20},
        headers=admin_headers
    )

    assert response.json()["affected"] == 2
    db.expire_all()
    assert db.get(models.Product, cola.id).price == Decimal("1.00")
    assert db.get(models.Product, water.id).stock == 20
    # water already had 20, only cola's change is recorded
    assert db.query(models.StockMovement).count() == 1


def test_bulk_update_needs_a_field(client, products, admin_headers):
    response = client.post(
        "/api/products/bulk-update",
        json={"productIds": [products["cola"].id]},
        headers=admin_headers
    )
    assert response.status_code == 400


def test_products_sort_by_stock(client, db, category):
    make_product(db, category, "Alpha", "1.00", 3)
    make_product(db, category, "Bravo", "1.00", 1)
    make_product(db, category, "Charlie", "1.00", 2)

    response = client.get("/api/products", params={"sortBy": "stock", "sortOrder": "desc"})
    assert names(response) == ["Alpha", "Charlie", "Bravo"]


def test_update_refuses_null_for_required_fields(client, db, products, admin_headers):
    cola = products["cola"]
    for body in ({"name": None}, {"price": None}, {"stock": None}, {"images": None}):
        assert client.patch(f"/api/products/{cola.id}", json=body, headers=admin_headers).status_code == 422

    # optional columns may still be cleared
    cleared = client.patch(f"/api/products/{cola.id}", json={"barcode": None}, headers=admin_headers)
    assert cleared.status_code == 200
    assert cleared.json()["barcode"] is None
    assert cleared.json()["name"] == "Cola"
