import pytest

from live_articles import auth, crud, schemas
from live_articles.errors import AuthError, ConflictError, NotFoundError, ValidationError
from live_articles.models import User


def test_create_user_hashes_password(db, make_user):
    user = make_user("alice", "Alice@X.com", "pw1234")
    assert user.id is not None
    assert user.email == "alice@x.com"
    assert user.role == "USER"
    assert user.hashed_password != "pw1234"
    assert crud.verify_password("pw1234", user.hashed_password)


def test_create_user_rejects_taken_name_and_email(db, make_user):
    make_user("alice", "alice@x.com")
    with pytest.raises(ConflictError) as exc:
        make_user("alice", "other@x.com")
    assert exc.value.field == "name"
    with pytest.raises(ValidationError):
        make_user("bob", "ALICE@x.com")
    assert db.query(User).count() == 1


def test_create_user_requires_password(db):
    with pytest.raises(ValidationError) as exc:
        crud.create_user(db, schemas.UserCreate(name="carol", email="carol@x.com", password="123"))
    assert exc.value.field == "password"


def test_verify_credential_by_name_or_email(db, make_user):
    user = make_user("alice", "alice@x.com", "pw1234")
    assert crud.verify_credential(db, "alice", "pw1234").id == user.id
    assert crud.verify_credential(db, "ALICE@X.COM", "pw1234").id == user.id


def test_verify_credential_errors(db, make_user):
    make_user("alice", "alice@x.com", "pw1234")
    with pytest.raises(AuthError, match="not registered"):
        crud.verify_credential(db, "nobody@x.com", "pw1234")
    with pytest.raises(AuthError, match="Invalid password"):
        crud.verify_credential(db, "alice@x.com", "wrong-pw")


def test_user_without_password_follows_flag(db):
    legacy = User(name="legacy", email="legacy@x.com", hashed_password=None)
    db.add(legacy)
    db.commit()

    assert crud.verify_credential(db, "legacy", "anything", allow_empty=True).id == legacy.id
    with pytest.raises(AuthError):
        crud.verify_credential(db, "legacy", "anything", allow_empty=False)


def test_update_credential(db, make_user):
    user = make_user("alice", password="pw1234")
    with pytest.raises(AuthError):
        crud.update_credential(db, user, "bad-old", "newpass1")

    crud.update_credential(db, user, "pw1234", "newpass1")
    assert crud.verify_credential(db, "alice", "newpass1").id == user.id
    with pytest.raises(AuthError):
        crud.verify_credential(db, "alice", "pw1234")


def test_sign_in_returns_token(db, make_user):
    user = make_user("alice", password="pw1234")
    signed_in, token, auth_type = crud.sign_in(db, "alice@x.com", "pw1234")
    assert signed_in.id == user.id
    assert auth_type == crud.AuthType.SIGNIN
    payload = auth.decode_access_token(token)
    assert payload["sub"] == str(user.id)
    assert payload["role"] == "USER"
    assert auth.get_current_user(db, token).id == user.id


def test_invalid_token_is_auth_error(db):
    with pytest.raises(AuthError):
        auth.get_current_user(db, "not-a-token")


def test_update_user_profile(db, make_user):
    alice = make_user("alice")
    make_user("bob")

    with pytest.raises(ConflictError):
        crud.update_user(db, alice, schemas.UserUpdate(name="bob"))

    updated = crud.update_user(db, alice, schemas.UserUpdate(name="alice2", gender="FEMALE", age=30))
    assert updated.name == "alice2"
    assert updated.gender == "FEMALE"
    assert updated.age == 30


def test_get_user_not_found(db):
    with pytest.raises(NotFoundError):
        crud.get_user(db, 999)
