"""Profile self-service and staff administration of accounts."""

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from authcore.core.exceptions import (
    EmailTaken,
    InvalidOperation,
    PermissionDenied,
    ResourceNotFound,
)
from authcore.core.security import Role
from authcore.models.refresh_token import RefreshToken
from authcore.models.user import User

PHONE = "+79991234567"
ADMIN_PHONE = "+79990000009"
MANAGER_PHONE = "+79990000008"


async def _staff(db_session: AsyncSession, login, phone: str, role: Role):
    db_session.add(User(phone=phone, role=role.value, is_active=True))
    await db_session.commit()
    return await login(phone)


def _bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


# ── Own profile ─────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_profile_update_shows_up_in_next_login(services, login, clock, events):
    auth = await login()

    user = await services.accounts.update_profile(
        auth.user.id, {"first_name": "Ivan", "email": "ivan@example.com"}
    )
    assert user.first_name == "Ivan"
    assert events.events[-1].name == "user.profile.updated"
    assert events.events[-1].changed == ("email", "first_name")

    clock.advance(seconds=181)
    again = await login()
    assert again.user.first_name == "Ivan"
    assert again.user.email == "ivan@example.com"
    assert again.user.last_name is None


@pytest.mark.asyncio
async def test_profile_update_cannot_touch_role_or_status(services, login):
    auth = await login()

    user = await services.accounts.update_profile(
        auth.user.id, {"role": "ADMIN", "is_active": False, "last_name": "Petrov"}
    )

    assert user.role == Role.CUSTOMER.value
    assert user.is_active is True
    assert user.last_name == "Petrov"


@pytest.mark.asyncio
async def test_email_must_be_unique(services, login):
    first = await login()
    second = await login("+79990000002")
    await services.accounts.update_profile(first.user.id, {"email": "same@example.com"})

    with pytest.raises(EmailTaken):
        await services.accounts.update_profile(second.user.id, {"email": "same@example.com"})

    # re-saving your own address is fine
    await services.accounts.update_profile(first.user.id, {"email": "same@example.com"})


@pytest.mark.asyncio
async def test_profile_of_missing_user(services):
    with pytest.raises(ResourceNotFound):
        await services.accounts.get_profile("missing")


# ── Staff lookups and edits ─────────────────────────────────────────
@pytest.mark.asyncio
async def test_customer_sees_only_own_account(services, login):
    me = await login()
    other = await login("+79990000002")

    own = await services.accounts.get_user(me.user.id, actor_id=me.user.id, actor_role=Role.CUSTOMER)
    assert own.id == me.user.id
    with pytest.raises(PermissionDenied):
        await services.accounts.get_user(other.user.id, actor_id=me.user.id, actor_role=Role.CUSTOMER)

    seen = await services.accounts.get_user(other.user.id, actor_id=me.user.id, actor_role=Role.MANAGER)
    assert seen.id == other.user.id


@pytest.mark.asyncio
async def test_only_admin_changes_roles(services, login, db_session, events):
    manager = await _staff(db_session, login, MANAGER_PHONE, Role.MANAGER)
    admin = await _staff(db_session, login, ADMIN_PHONE, Role.ADMIN)
    customer = await login()

    with pytest.raises(PermissionDenied):
        await services.accounts.update_user(
            customer.user.id, {"role": Role.MANAGER}, actor_id=manager.user.id, actor_role=Role.MANAGER
        )

    user = await services.accounts.update_user(
        customer.user.id, {"role": Role.MANAGER}, actor_id=admin.user.id, actor_role=Role.ADMIN
    )
    assert user.role == "MANAGER"
    event = events.events[-1]
    assert event.name == "user.updated"
    assert event.updated_by == admin.user.id
    assert event.changed == ("role",)


@pytest.mark.asyncio
async def test_admin_cannot_change_own_role(services, login, db_session):
    admin = await _staff(db_session, login, ADMIN_PHONE, Role.ADMIN)

    with pytest.raises(InvalidOperation):
        await services.accounts.update_user(
            admin.user.id, {"role": Role.CUSTOMER}, actor_id=admin.user.id, actor_role=Role.ADMIN
        )
    with pytest.raises(InvalidOperation):
        await services.accounts.update_user(
            admin.user.id, {"is_active": False}, actor_id=admin.user.id, actor_role=Role.ADMIN
        )

    # restating the current role is not a change
    user = await services.accounts.update_user(
        admin.user.id,
        {"role": Role.ADMIN, "first_name": "Anna"},
        actor_id=admin.user.id,
        actor_role=Role.ADMIN,
    )
    assert user.first_name == "Anna"


@pytest.mark.asyncio
async def test_explicit_null_role_is_ignored(services, login, db_session):
    admin = await _staff(db_session, login, ADMIN_PHONE, Role.ADMIN)
    customer = await login()

    user = await services.accounts.update_user(
        customer.user.id,
        {"role": None, "is_active": None, "first_name": "Olga"},
        actor_id=admin.user.id,
        actor_role=Role.ADMIN,
    )

    assert user.role == "CUSTOMER"
    assert user.is_active is True


@pytest.mark.asyncio
async def test_deactivate_then_reactivate_through_update(services, login, db_session, fetch_all, events):
    admin = await _staff(db_session, login, ADMIN_PHONE, Role.ADMIN)
    customer = await login()

    await services.accounts.update_user(
        customer.user.id, {"is_active": False}, actor_id=admin.user.id, actor_role=Role.ADMIN
    )
    tokens = await fetch_all(RefreshToken, RefreshToken.user_id == customer.user.id)
    assert tokens and all(t.is_revoked for t in tokens)
    assert events.names[-2:] == ["user.updated", "user.deactivated"]

    user = await services.accounts.update_user(
        customer.user.id, {"is_active": True}, actor_id=admin.user.id, actor_role=Role.ADMIN
    )
    assert user.is_active is True
    assert events.names[-1] == "user.updated"

    identity = await services.identity.authenticate(customer.access_token)
    assert identity.id == customer.user.id


@pytest.mark.asyncio
async def test_update_missing_user(services, login, db_session):
    admin = await _staff(db_session, login, ADMIN_PHONE, Role.ADMIN)
    with pytest.raises(ResourceNotFound):
        await services.accounts.update_user(
            "missing", {"first_name": "Nobody"}, actor_id=admin.user.id, actor_role=Role.ADMIN
        )


@pytest.mark.asyncio
async def test_stats(services, login, db_session):
    admin = await _staff(db_session, login, ADMIN_PHONE, Role.ADMIN)
    customer = await login()
    await login("+79990000002")
    await services.accounts.deactivate(customer.user.id, actor_id=admin.user.id)

    stats = await services.accounts.stats()

    assert stats == {
        "total": 3,
        "active": 2,
        "inactive": 1,
        "by_role": {"CUSTOMER": 2, "MANAGER": 0, "ADMIN": 1},
        "recent_registrations": 3,
    }


# ── HTTP ────────────────────────────────────────────────────────────
async def _http_login(client: AsyncClient, phone: str = PHONE) -> dict:
    code = (await client.post("/api/v1/auth/otp/request", json={"phone": phone})).json()["code"]
    resp = await client.post("/api/v1/auth/otp/verify", json={"phone": phone, "code": code})
    assert resp.status_code == 200, resp.text
    return resp.json()


@pytest.mark.asyncio
async def test_profile_routes(async_client: AsyncClient):
    tokens = await _http_login(async_client)
    headers = _bearer(tokens["access_token"])

    resp = await async_client.put(
        "/api/v1/users/profile",
        json={"first_name": "  Ivan ", "email": "Ivan@Example.com"},
        headers=headers,
    )
    assert resp.status_code == 200
    assert resp.json()["first_name"] == "Ivan"
    assert resp.json()["email"] == "ivan@example.com"

    resp = await async_client.get("/api/v1/users/profile", headers=headers)
    assert resp.status_code == 200
    assert resp.json()["phone"] == PHONE
    assert resp.json()["first_name"] == "Ivan"


@pytest.mark.asyncio
@pytest.mark.parametrize("body", [{"email": "not-an-email"}, {"first_name": "A"}])
async def test_profile_validation(async_client: AsyncClient, body: dict):
    tokens = await _http_login(async_client)
    resp = await async_client.put(
        "/api/v1/users/profile", json=body, headers=_bearer(tokens["access_token"])
    )
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_anonymous_session_has_no_profile(async_client: AsyncClient):
    session = (await async_client.post("/api/v1/auth/anonymous")).json()
    resp = await async_client.get("/api/v1/users/profile", headers=_bearer(session["session_token"]))
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_admin_user_routes(async_client: AsyncClient, db_session: AsyncSession):
    db_session.add(User(phone=ADMIN_PHONE, role="ADMIN", is_active=True))
    await db_session.commit()
    admin = _bearer((await _http_login(async_client, ADMIN_PHONE))["access_token"])
    customer = await _http_login(async_client)
    customer_id = customer["user"]["id"]

    resp = await async_client.get(f"/api/v1/users/{customer_id}", headers=admin)
    assert resp.status_code == 200
    assert resp.json()["is_active"] is True

    resp = await async_client.put(
        f"/api/v1/users/{customer_id}", json={"role": "MANAGER", "is_active": False}, headers=admin
    )
    assert resp.status_code == 200
    assert resp.json()["role"] == "MANAGER"
    assert resp.json()["is_active"] is False

    resp = await async_client.put(f"/api/v1/users/{customer_id}", json={"is_active": True}, headers=admin)
    assert resp.status_code == 200
    assert resp.json()["is_active"] is True

    resp = await async_client.get("/api/v1/users/stats", headers=admin)
    assert resp.status_code == 200
    assert resp.json()["by_role"] == {"CUSTOMER": 0, "MANAGER": 1, "ADMIN": 1}

    resp = await async_client.get("/api/v1/users/00000000-0000-0000-0000-000000000000", headers=admin)
    assert resp.status_code == 404
    assert resp.json()["kind"] == "not_found"


@pytest.mark.asyncio
async def test_customer_is_limited_on_user_routes(async_client: AsyncClient):
    me = await _http_login(async_client)
    other = await _http_login(async_client, "+79990000002")
    headers = _bearer(me["access_token"])

    assert (await async_client.get(f"/api/v1/users/{me['user']['id']}", headers=headers)).status_code == 200
    assert (await async_client.get(f"/api/v1/users/{other['user']['id']}", headers=headers)).status_code == 403
    resp = await async_client.put(
        f"/api/v1/users/{other['user']['id']}", json={"first_name": "Hacker"}, headers=headers
    )
    assert resp.status_code == 403
    assert (await async_client.get("/api/v1/users/stats", headers=headers)).status_code == 403
