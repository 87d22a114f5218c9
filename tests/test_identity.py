from datetime import datetime, timedelta, timezone

import pytest
from bson import ObjectId
from jose import jwt

from marketchat.core.config import settings
from marketchat.core.exceptions import InvalidCredential, Unauthenticated, UnknownSubject
from marketchat.repositories.user_repository import UserRepository
from marketchat.services.identity_service import IdentityVerifier
from marketchat.utils.security import create_access_token, decode_access_token, looks_like_jwt


pytestmark = pytest.mark.anyio


@pytest.fixture
def verifier(test_db) -> IdentityVerifier:
    return IdentityVerifier(UserRepository(test_db))


async def test_valid_token_resolves_user(verifier, seed_test_users):
    user = seed_test_users[0]

    resolved = await verifier.verify(create_access_token(str(user["_id"])))

    assert resolved.id == str(user["_id"])
    assert resolved.name == user["name"]
    assert resolved.photo_url == user["photoURL"]


async def test_auth_service_token_resolves_user(verifier, seed_test_users):
    user = seed_test_users[1]
    expires = datetime.now(timezone.utc) + timedelta(days=1)
    token = jwt.encode(
        {"userId": str(user["_id"]), "exp": int(expires.timestamp())},
        settings.jwt_secret,
        algorithm=settings.jwt_algorithm,
    )

    resolved = await verifier.verify(token)

    assert resolved.id == str(user["_id"])


async def test_standard_subject_claim_is_accepted(verifier, seed_test_users):
    user = seed_test_users[2]
    token = jwt.encode({"sub": str(user["_id"])}, settings.jwt_secret, algorithm=settings.jwt_algorithm)

    assert (await verifier.verify(token)).id == str(user["_id"])


async def test_user_id_claim_must_be_a_string(verifier):
    token = jwt.encode({"userId": 42}, settings.jwt_secret, algorithm=settings.jwt_algorithm)
    with pytest.raises(InvalidCredential):
        await verifier.verify(token)


@pytest.mark.parametrize("token", [None, "", "not-a-jwt", "a.b"])
async def test_missing_or_unshaped_token(verifier, token):
    with pytest.raises(Unauthenticated):
        await verifier.verify(token)


async def test_wrong_signature(verifier, seed_test_users):
    token = jwt.encode({"userId": str(seed_test_users[0]["_id"])}, "some-other-secret", algorithm="HS256")
    with pytest.raises(InvalidCredential):
        await verifier.verify(token)


async def test_expired_token(verifier, seed_test_users):
    token = create_access_token(str(seed_test_users[0]["_id"]), expires_minutes=-1)
    with pytest.raises(InvalidCredential):
        await verifier.verify(token)


async def test_user_id_must_be_an_object_id(verifier):
    token = jwt.encode({"userId": "someone"}, settings.jwt_secret, algorithm=settings.jwt_algorithm)
    with pytest.raises(InvalidCredential):
        await verifier.verify(token)


async def test_unknown_subject(verifier, seed_test_users):
    with pytest.raises(UnknownSubject):
        await verifier.verify(create_access_token(str(ObjectId())))


def test_token_round_trip():
    user_id = str(ObjectId())
    payload = decode_access_token(create_access_token(user_id))
    assert payload["userId"] == user_id
    assert payload["exp"] > payload["iat"]


def test_looks_like_jwt():
    assert looks_like_jwt("x.y.z")
    assert not looks_like_jwt("x..z")
    assert not looks_like_jwt("xyz")
