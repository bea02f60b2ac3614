from __future__ import annotations

from datetime import timedelta

import jwt
import pytest

from calboard.identity import IdentityError, hash_password, verify_password
from calboard.models import AuthSession, User
from calboard.storage import rotate_project_key
from calboard.utils import utcnow

from conftest import PASSWORD, create_account


def test_password_hash_round_trip():
    encoded = hash_password("s3cret!", iterations=1_000)
    assert encoded.startswith("pbkdf2_sha256$1000$")
    assert verify_password("s3cret!", encoded)
    assert not verify_password("wrong", encoded)
    assert not verify_password("s3cret!", "garbage")


@pytest.mark.parametrize(
    ("email", "password", "code"),
    [
        ("not-an-email", "longenough", "auth/invalid-email"),
        ("ada@example.com", "short", "auth/weak-password"),
    ],
)
def test_create_user_rejects_bad_input(backend, email, password, code):
    with pytest.raises(IdentityError) as excinfo:
        create_account(backend, email=email, password=password)
    assert excinfo.value.code == code


def test_create_user_rejects_duplicate_email(backend):
    create_account(backend)
    with pytest.raises(IdentityError) as excinfo:
        create_account(backend, email="ADA@example.com ")
    assert excinfo.value.code == "auth/email-already-in-use"


def test_sign_in_returns_token_for_current_user(backend):
    user = create_account(backend)
    signed_in = backend.identity.sign_in(email="Ada@Example.com", password=PASSWORD)
    assert signed_in.user_id == user.id
    assert signed_in.display_name == "Ada"
    current = backend.identity.current_user(signed_in.token)
    assert current.id == user.id


def test_sign_in_unknown_user(backend):
    with pytest.raises(IdentityError) as excinfo:
        backend.identity.sign_in(email="nobody@example.com", password=PASSWORD)
    assert excinfo.value.code == "auth/user-not-found"


def test_repeated_failures_lock_the_account(backend, settings):
    create_account(backend)
    codes = []
    for _ in range(settings.max_failed_sign_ins):
        with pytest.raises(IdentityError) as excinfo:
            backend.identity.sign_in(email="ada@example.com", password="wrong-pass")
        codes.append(excinfo.value.code)
    assert codes[-1] == "auth/too-many-requests"
    assert set(codes[:-1]) == {"auth/wrong-password"}

    with pytest.raises(IdentityError) as excinfo:
        backend.identity.sign_in(email="ada@example.com", password=PASSWORD)
    assert excinfo.value.code == "auth/too-many-requests"


def test_lock_expires(backend):
    user = create_account(backend)
    with backend.session() as db:
        db.get(User, user.id).locked_until = utcnow() - timedelta(minutes=1)
    assert backend.identity.sign_in(email="ada@example.com", password=PASSWORD)


def test_sign_out_revokes_and_notifies(backend):
    create_account(backend)
    seen = []
    backend.identity.on_auth_state_changed(lambda uid, state: seen.append(state))
    signed_in = backend.identity.sign_in(email="ada@example.com", password=PASSWORD)

    backend.identity.sign_out(signed_in.token)

    assert backend.identity.current_user(signed_in.token) is None
    assert seen == [True, False]


def test_unsubscribed_listener_is_not_called(backend):
    create_account(backend)
    seen = []
    unsubscribe = backend.identity.on_auth_state_changed(lambda uid, state: seen.append(state))
    unsubscribe()
    backend.identity.sign_in(email="ada@example.com", password=PASSWORD)
    assert seen == []


def test_tampered_or_foreign_tokens_are_rejected(backend, settings):
    create_account(backend)
    signed_in = backend.identity.sign_in(email="ada@example.com", password=PASSWORD)
    claims = jwt.decode(
        signed_in.token,
        settings.backend.session_secret,
        algorithms=["HS256"],
        audience=settings.backend.app_id,
    )
    forged = jwt.encode(claims, "another-secret-of-sufficient-length", algorithm="HS256")

    assert backend.identity.current_user(forged) is None
    assert backend.identity.current_user("not-a-token") is None
    assert backend.identity.current_user(None) is None


def test_expired_sessions_are_purged(backend):
    create_account(backend)
    live = backend.identity.sign_in(email="ada@example.com", password=PASSWORD)
    stale = backend.identity.sign_in(email="ada@example.com", password=PASSWORD)
    backend.identity.sign_out(stale.token)

    assert backend.identity.purge_sessions() == 1
    assert backend.identity.current_user(live.token) is not None
    with backend.session() as db:
        assert db.query(AuthSession).count() == 1


def test_mismatched_api_key_blocks_accounts(backend, settings):
    rotate_project_key(backend.factory, "rotated-key")
    with pytest.raises(IdentityError) as excinfo:
        create_account(backend)
    assert excinfo.value.code == "auth/api-key-not-valid"
