import pytest

from auth import (
    hash_password,
    issue_session_token,
    read_session_token,
    user_from_session,
    verify_password,
)
from csrf import generate_csrf_token, validate_csrf_token
from errors import (
    ConflictError,
    Forbidden,
    InvalidCredentials,
    NotFoundError,
    Unauthenticated,
    ValidationError,
)
from models import UserRole

SECRET = "test-secret"


def _signup(**overrides):
    data = {
        "firstName": "Carol",
        "lastName": "Clark",
        "email": "Carol@Example.com",
        "password": "hunter22",
    }
    data.update(overrides)
    return data


def test_create_user_hashes_password_and_normalizes_email(accounts) -> None:
    user = accounts.create_user(_signup())

    assert user.email == "carol@example.com"
    assert user.role == UserRole.user
    assert user.password_hash != "hunter22"
    assert verify_password("hunter22", user.password_hash)
    assert not verify_password("hunter23", user.password_hash)


def test_duplicate_email_conflicts(accounts) -> None:
    accounts.create_user(_signup())
    with pytest.raises(ConflictError):
        accounts.create_user(_signup(email="carol@example.com", firstName="Other"))


def test_phone_signup_and_signin(accounts) -> None:
    user = accounts.create_user(_signup(email=None, phone="+1 555 010 9999"))
    assert user.phone == "+15550109999"
    assert user.email is None

    assert accounts.authenticate("+1 555 010 9999", "hunter22").id == user.id
    with pytest.raises(ConflictError):
        accounts.create_user(_signup(email=None, phone="+15550109999"))


@pytest.mark.parametrize(
    "overrides",
    [
        {"email": None},
        {"phone": "+15550109999"},
        {"email": "not-an-email"},
        {"password": "short"},
        {"firstName": "C"},
    ],
)
def test_signup_validation(accounts, overrides) -> None:
    with pytest.raises(ValidationError):
        accounts.create_user(_signup(**overrides))


def test_authenticate_failures_are_uniform(accounts) -> None:
    accounts.create_user(_signup())

    with pytest.raises(InvalidCredentials) as wrong_password:
        accounts.authenticate("carol@example.com", "wrong-password")
    with pytest.raises(InvalidCredentials) as unknown_user:
        accounts.authenticate("nobody@example.com", "hunter22")

    assert wrong_password.value.message == unknown_user.value.message
    assert wrong_password.value.status_code == 401
    assert accounts.authenticate(" CAROL@example.com ", "hunter22").first_name == "Carol"


def test_configured_admin_email_gets_admin_role(accounts) -> None:
    user = accounts.create_user(_signup(email="Admin@example.com"))
    assert user.role == UserRole.admin


def test_promote_to_admin(accounts, admin) -> None:
    carol = accounts.create_user(_signup())

    with pytest.raises(Forbidden):
        accounts.promote_to_admin(carol, "carol@example.com")

    promoted = accounts.promote_to_admin(admin, "CAROL@example.com")
    assert promoted.role == UserRole.admin
    assert accounts.storage.get_user(carol.id).role == UserRole.admin

    with pytest.raises(NotFoundError):
        accounts.promote_to_admin(admin, "ghost@example.com")


def test_update_profile(accounts) -> None:
    carol = accounts.create_user(_signup())

    updated = accounts.update_profile(carol.id, {"lastName": " Cooper "})
    assert updated.last_name == "Cooper"
    assert updated.first_name == "Carol"

    with pytest.raises(ValidationError):
        accounts.update_profile(carol.id, {"firstName": "X"})
    with pytest.raises(NotFoundError):
        accounts.update_profile(999, {"firstName": "Nobody"})


@pytest.mark.parametrize("field", ["firstName", "lastName"])
def test_update_profile_rejects_null_names(accounts, field) -> None:
    carol = accounts.create_user(_signup())

    with pytest.raises(ValidationError) as exc:
        accounts.update_profile(carol.id, {field: None})
    assert exc.value.errors[0]["message"] == "Name is required"

    stored = accounts.storage.get_user(carol.id)
    assert (stored.first_name, stored.last_name) == ("Carol", "Clark")

    cleared = accounts.update_profile(carol.id, {"profileImageUrl": None})
    assert cleared.profile_image_url is None


def test_password_longer_than_bcrypt_limit_is_rejected() -> None:
    with pytest.raises(ValidationError):
        hash_password("é" * 40, rounds=4)
    assert verify_password("é" * 40, hash_password("short-pass", rounds=4)) is False


def test_session_token_round_trip(storage, alice) -> None:
    token = issue_session_token(SECRET, alice.id)
    assert read_session_token(SECRET, token, 1) == alice.id
    assert read_session_token("other-secret", token, 1) is None
    assert user_from_session(storage, SECRET, token, 1).id == alice.id

    with pytest.raises(Unauthenticated):
        user_from_session(storage, SECRET, None, 1)
    with pytest.raises(Unauthenticated):
        user_from_session(storage, SECRET, token + "x", 1)
    with pytest.raises(Unauthenticated):
        user_from_session(storage, SECRET, issue_session_token(SECRET, 999), 1)


def test_csrf_token_is_bound_to_user() -> None:
    token = generate_csrf_token(SECRET, 1)
    assert validate_csrf_token(SECRET, token, 1)
    assert not validate_csrf_token(SECRET, token, 2)
    assert not validate_csrf_token(SECRET, "", 1)
    assert not validate_csrf_token("other-secret", token, 1)
    assert not validate_csrf_token(SECRET, generate_csrf_token(SECRET, 1, max_age_hours=-1), 1)
