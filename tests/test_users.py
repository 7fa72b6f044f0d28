import pytest

from app.models.users import UserRole, PASSWORD_RESET_ROLES
from app.services.users import UserRepository


@pytest.mark.asyncio
async def test_find_active_lookups(db_session, admin_user, make_user):
    """Test lookups ignore inactive users"""
    await make_user("ghost", role=UserRole.ADMIN, email="ghost@example.com", phone="+33600000009", is_active=False)
    users = UserRepository(db_session)

    assert (await users.find_active_by_username("alice")).sid == admin_user.sid
    assert (await users.find_active_by_email("alice@example.com")).sid == admin_user.sid

    assert await users.find_active_by_username("ghost") is None
    assert await users.find_active_by_email("ghost@example.com") is None
    assert await users.find_active_by_identifier("+33600000009") is None


@pytest.mark.asyncio
async def test_find_active_by_identifier(db_session, admin_user):
    users = UserRepository(db_session)

    for identifier in ("alice", "alice@example.com", "+33600000001"):
        assert (await users.find_active_by_identifier(identifier)).sid == admin_user.sid
    assert await users.find_active_by_identifier("nobody") is None


@pytest.mark.asyncio
async def test_find_active_by_login_name_with_roles(db_session, admin_user, pharmacist_user):
    """Test the role filter used by password reset"""
    users = UserRepository(db_session)

    assert await users.find_active_by_login_name("alice@example.com", roles=PASSWORD_RESET_ROLES) is not None
    assert await users.find_active_by_login_name("paul", roles=PASSWORD_RESET_ROLES) is None
    assert await users.find_active_by_login_name("paul") is not None


@pytest.mark.asyncio
async def test_updates(db_session, admin_user):
    users = UserRepository(db_session)

    await users.update_last_login(admin_user)
    await users.update_password_hash(admin_user, "$2b$04$newhash")

    reloaded = await users.get_by_sid(admin_user.sid)
    assert reloaded.last_login is not None
    assert reloaded.password_hash == "$2b$04$newhash"
    assert await users.get_by_sid("missing") is None
