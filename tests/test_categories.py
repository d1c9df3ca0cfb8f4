import pytest

from backoffice import categories
from conftest import make_product


@pytest.mark.parametrize("name,slug", [
    ("Fresh Fruit", "fresh-fruit"),
    ("  Beer & Wine  ", "beer-wine"),
    ("Café", "caf"),
    ("!!!", "category"),
])
def test_create_slug(name, slug):
    assert categories.create_slug(name) == slug


def test_unique_slug_gets_counter_suffix():
    assert categories.generate_unique_slug("Snacks", []) == "snacks"
    assert categories.generate_unique_slug("Snacks", ["snacks"]) == "snacks-1"
    assert categories.generate_unique_slug("Snacks", ["snacks", "snacks-1"]) == "snacks-2"


def create(client, headers, name, parent_id=None):
    body = {"name": name}
    if parent_id:
        body["parentId"] = parent_id
    return client.post("/api/categories", json=body, headers=headers)


def test_create_places_category_after_siblings(client, admin_headers):
    first = create(client, admin_headers, "Food").json()
    second = create(client, admin_headers, "Food").json()

    assert (first["slug"], first["level"], first["sortOrder"]) == ("food", 0, 1)
    assert (second["slug"], second["sortOrder"]) == ("food-1", 2)

    child = create(client, admin_headers, "Fruit", parent_id=first["id"]).json()
    assert (child["level"], child["sortOrder"], child["parentId"]) == (1, 1, first["id"])


def test_create_requires_admin_and_known_parent(client, admin_headers, staff_headers):
    assert create(client, staff_headers, "Food").status_code == 403
    assert create(client, admin_headers, "Food", parent_id="cat_missing").status_code == 404
    assert create(client, admin_headers, "F").status_code == 422


def test_tree_and_path(client, admin_headers):
    food = create(client, admin_headers, "Food").json()
    drinks = create(client, admin_headers, "Drinks").json()
    fruit = create(client, admin_headers, "Fruit", parent_id=food["id"]).json()
    apples = create(client, admin_headers, "Apples", parent_id=fruit["id"]).json()

    tree = client.get("/api/categories").json()
    assert [n["name"] for n in tree] == ["Food", "Drinks"]
    assert tree[0]["children"][0]["children"][0]["id"] == apples["id"]
    assert tree[1]["children"] == []

    path = client.get(f"/api/categories/{apples['id']}/path").json()
    assert [c["name"] for c in path] == ["Food", "Fruit", "Apples"]
    assert apples["level"] == 2
    assert drinks["level"] == 0


def test_tree_orders_by_sort_order(client, admin_headers):
    food = create(client, admin_headers, "Food").json()
    drinks = create(client, admin_headers, "Drinks").json()
    client.patch(f"/api/categories/{food['id']}", json={"sortOrder": 5}, headers=admin_headers)

    assert [n["id"] for n in client.get("/api/categories").json()] == [drinks["id"], food["id"]]


def test_rename_keeps_slug(client, admin_headers):
    food = create(client, admin_headers, "Food").json()
    response = client.patch(f"/api/categories/{food['id']}", json={"name": "Groceries"}, headers=admin_headers)

    assert response.json()["name"] == "Groceries"
    assert response.json()["slug"] == "food"
    assert client.patch(f"/api/categories/{food['id']}", json={}, headers=admin_headers).status_code == 400


def test_delete_guards(client, db, admin_headers):
    food = create(client, admin_headers, "Food").json()
    fruit = create(client, admin_headers, "Fruit", parent_id=food["id"]).json()

    blocked = client.delete(f"/api/categories/{food['id']}", headers=admin_headers)
    assert blocked.status_code == 409
    assert blocked.json()["detail"] == "Category still has subcategories"

    make_product(db, categories.get_category(db, fruit["id"]), "Banana", "0.30", 40)
    blocked = client.delete(f"/api/categories/{fruit['id']}", headers=admin_headers)
    assert blocked.status_code == 409
    assert blocked.json()["detail"] == "Category still has products"


def test_delete_empty_category(client, admin_headers):
    food = create(client, admin_headers, "Food").json()

    assert client.delete(f"/api/categories/{food['id']}", headers=admin_headers).status_code == 204
    assert client.get(f"/api/categories/{food['id']}").status_code == 404
    assert client.delete(f"/api/categories/{food['id']}", headers=admin_headers).status_code == 404


def test_update_refuses_null_for_required_fields(client, admin_headers):
    food = create(client, admin_headers, "Food").json()

    for body in ({"sortOrder": None}, {"name": None}, {"isActive": None}):
        assert client.patch(f"/api/categories/{food['id']}", json=body, headers=admin_headers).status_code == 422

    cleared = client.patch(f"/api/categories/{food['id']}", json={"description": None}, headers=admin_headers)
    assert cleared.status_code == 200
    assert cleared.json()["sortOrder"] == 1
