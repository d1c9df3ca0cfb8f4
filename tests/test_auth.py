from datetime import timedelta

from backoffice import auth
from conftest import bearer, make_user


def register(client, email, name="Shop Owner", password="secret123"):
    return client.post("/api/auth/register", json={"name": name, "email": email, "password": password})


def test_first_account_is_admin_then_customers(client):
    first = register(client, "owner@example.com")
    assert first.status_code == 201
    token = first.json()["accessToken"]

    me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.json()["role"] == "ADMIN"

    second = register(client, "someone@example.com", name="Someone")
    me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {second.json()['accessToken']}"})
    assert me.json()["role"] == "CUSTOMER"


def test_duplicate_email_is_409(client):
    register(client, "owner@example.com")
    assert register(client, "owner@example.com").status_code == 409


def test_registration_is_validated(client):
    assert register(client, "owner@example.com", password="123").status_code == 422
    assert register(client, "not-an-email").status_code == 422


def test_login(client):
    register(client, "owner@example.com")

    ok = client.post("/api/auth/login", json={"email": "owner@example.com", "password": "secret123"})
    assert ok.status_code == 200
    assert ok.json()["tokenType"] == "bearer"

    wrong = client.post("/api/auth/login", json={"email": "owner@example.com", "password": "nope-nope"})
    assert wrong.status_code == 401

    unknown = client.post("/api/auth/login", json={"email": "ghost@example.com", "password": "secret123"})
    assert unknown.status_code == 401


def test_bad_and_expired_tokens_are_rejected(client, admin):
    assert client.get("/api/auth/me").status_code == 401
    assert client.get("/api/auth/me", headers={"Authorization": "Bearer garbage"}).status_code == 401

    expired = auth.create_access_token({"sub": str(admin.id)}, expires_delta=timedelta(minutes=-5))
    assert client.get("/api/auth/me", headers={"Authorization": f"Bearer {expired}"}).status_code == 401


def test_inactive_user_is_403(client, db):
    user = make_user(db, "STAFF")
    user.is_active = False
    db.commit()

    assert client.get("/api/auth/me", headers=bearer(user)).status_code == 403


def test_role_comes_from_database_not_token(client, db, staff):
    headers = bearer(staff)
    assert client.get("/api/users", headers=headers).status_code == 403

    staff.role = "ADMIN"
    db.commit()
    assert client.get("/api/users", headers=headers).status_code == 200


def test_admin_manages_users(client, db, admin, admin_headers):
    member = make_user(db, "CUSTOMER", email="member@example.com")

    listed = client.get("/api/users", headers=admin_headers).json()
    assert {u["email"] for u in listed} == {admin.email, member.email}

    response = client.patch(f"/api/users/{member.id}", json={"role": "STAFF"}, headers=admin_headers)
    assert response.status_code == 200
    assert response.json()["role"] == "STAFF"

    assert client.patch(f"/api/users/{member.id}", json={}, headers=admin_headers).status_code == 400
    assert client.patch("/api/users/9999", json={"isActive": False}, headers=admin_headers).status_code == 404

    assert client.delete(f"/api/users/{member.id}", headers=admin_headers).status_code == 204
    assert client.delete(f"/api/users/{member.id}", headers=admin_headers).status_code == 404


def test_admin_cannot_demote_or_delete_self(client, admin, admin_headers):
    demote = client.patch(f"/api/users/{admin.id}", json={"role": "STAFF"}, headers=admin_headers)
    assert demote.status_code == 403

    delete = client.delete(f"/api/users/{admin.id}", headers=admin_headers)
    assert delete.status_code == 403


def test_non_admins_cannot_manage_users(client, staff_headers, customer_headers):
    assert client.get("/api/users", headers=staff_headers).status_code == 403
    assert client.get("/api/users", headers=customer_headers).status_code == 403


def test_stored_emails_are_not_revalidated_on_output(client, db, admin_headers):
    make_user(db, "STAFF", email="till-1@shop.internal")

    listed = client.get("/api/users", headers=admin_headers)
    assert listed.status_code == 200
    assert "till-1@shop.internal" in {u["email"] for u in listed.json()}


def test_explicit_null_is_rejected(client, db, admin_headers):
    member = make_user(db, "CUSTOMER", email="member@example.com")

    response = client.patch(f"/api/users/{member.id}", json={"role": None}, headers=admin_headers)
    assert response.status_code == 422
    db.refresh(member)
    assert member.role == "CUSTOMER"
