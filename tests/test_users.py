import pytest

from photoclub import users
from photoclub.errors import NotFoundError, UnauthenticatedError, ValidationError


def test_register_and_authenticate(engine):
    user = users.register(engine, " alice ", "alice@example.com", "secret123")
    assert user['username'] == "alice"
    assert user['display_name'] == "alice"
    assert 'password' not in user

    assert users.authenticate(engine, "alice", "secret123")['id'] == user['id']
    with pytest.raises(UnauthenticatedError):
        users.authenticate(engine, "alice", "wrong-pass")
    with pytest.raises(UnauthenticatedError):
        users.authenticate(engine, "nobody", "secret123")


@pytest.mark.parametrize("username,email,password", [
    (None, "a@example.com", "secret123"),
    ("a", "", "secret123"),
    ("a", "a@example.com", None),
])
def test_register_requires_fields(engine, username, email, password):
    with pytest.raises(ValidationError):
        users.register(engine, username, email, password)


def test_register_password_length(engine):
    with pytest.raises(ValidationError) as exc:
        users.register(engine, "bob", "bob@example.com", "12345")
    assert "at least 6" in exc.value.message


def test_register_rejects_password_over_bcrypt_limit(engine):
    with pytest.raises(ValidationError) as exc:
        users.register(engine, "bob", "bob@example.com", "x" * 80)
    assert "at most 72 bytes" in exc.value.message

    # 24 three-byte characters hit the byte limit exactly
    users.register(engine, "eve", "eve@example.com", "\u20ac" * 24)
    assert users.authenticate(engine, "eve", "\u20ac" * 24)["username"] == "eve"
    with pytest.raises(ValidationError):
        users.register(engine, "zed", "zed@example.com", "\u20ac" * 25)


def test_register_duplicates(engine):
    users.register(engine, "carol", "carol@example.com", "secret123")
    with pytest.raises(ValidationError) as exc:
        users.register(engine, "carol", "other@example.com", "secret123")
    assert exc.value.message == "Username already exists"
    with pytest.raises(ValidationError) as exc:
        users.register(engine, "carol2", "carol@example.com", "secret123")
    assert exc.value.message == "Email already exists"
    assert users.count_users(engine) == 1


def test_authenticate_requires_credentials(engine):
    with pytest.raises(ValidationError):
        users.authenticate(engine, "", "")


def test_update_profile_only_changes_given_fields(engine, make_user):
    uid = make_user("dave", bio="old bio")
    updated = users.update_profile(engine, uid, display_name="Dave D")
    assert updated['display_name'] == "Dave D"
    assert updated['bio'] == "old bio"

    updated = users.update_profile(engine, uid, bio="  new  ", profile_image="")
    assert updated['bio'] == "new"
    assert updated['profile_image'] is None
    assert updated['display_name'] == "Dave D"


def test_update_profile_unknown_user(engine):
    with pytest.raises(NotFoundError):
        users.update_profile(engine, "missing", display_name="x")


def test_list_and_count(engine, make_user):
    make_user("erin")
    make_user("frank")
    listed = users.list_users(engine)
    assert {u['username'] for u in listed} == {"erin", "frank"}
    assert all('password' not in u and 'email' not in u for u in listed)
    assert users.count_users(engine) == 2


def test_get_user(engine, make_user):
    uid = make_user("gina")
    assert users.get_user(engine, uid)['username'] == "gina"
    with pytest.raises(NotFoundError):
        users.get_user(engine, "missing")
