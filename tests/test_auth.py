"""Tests for bearer token authentication."""

import time

import pytest
from jose import jwt

from auth import AuthError, AuthManager, UnauthenticatedError
from contracts import AuthorizationError
from database.exceptions import DatabaseError
from repos.memory import MemoryUserRepository

SECRET = 'test-secret'


def make_token(secret=SECRET, **claims):
    claims.setdefault('sub', 'user_123')
    claims.setdefault('exp', int(time.time()) + 300)
    return jwt.encode(claims, secret, algorithm='HS256')


class OfflineUserRepository(MemoryUserRepository):

    async def find_or_create_by_auth(self, provider, subject, email=None):
        raise DatabaseError("connection refused")


@pytest.fixture
def manager():
    return AuthManager(SECRET, provider='clerk')


def test_verify_token(manager):
    claims = manager.verify_token(make_token(email='a@example.com'))
    assert claims['sub'] == 'user_123'
    assert claims['email'] == 'a@example.com'


@pytest.mark.parametrize("token", [
    make_token(secret='wrong-secret'),
    make_token(exp=int(time.time()) - 10),
    make_token(sub=''),
    'not-a-jwt',
])
def test_verify_token_rejects(manager, token):
    with pytest.raises(UnauthenticatedError):
        manager.verify_token(token)


def test_audience_is_checked_when_configured():
    manager = AuthManager(SECRET, audience='contract-market')
    assert manager.verify_token(make_token(aud='contract-market'))['sub'] == 'user_123'
    with pytest.raises(UnauthenticatedError):
        manager.verify_token(make_token(aud='someone-else'))


def test_unauthenticated_is_an_authorization_error():
    assert issubclass(UnauthenticatedError, AuthorizationError)
    assert issubclass(UnauthenticatedError, AuthError)


@pytest.mark.asyncio
async def test_current_user_find_or_create(manager, repos):
    user = await manager.current_user(make_token(), repos.users)
    assert user.auth_provider == 'clerk'
    assert user.auth_subject == 'user_123'
    assert user.email is None

    again = await manager.current_user(make_token(email='late@example.com'), repos.users)
    assert again.id == user.id
    assert again.email == 'late@example.com'


@pytest.mark.asyncio
async def test_current_user_store_failure(manager, store):
    with pytest.raises(AuthError) as exc:
        await manager.current_user(make_token(), OfflineUserRepository(store))
    assert not isinstance(exc.value, UnauthenticatedError)
