import uuid
from datetime import datetime, timedelta

import fakeredis
import pytest

from app import create_app
from config import TestingConfig
from middleware.auth import auth_middleware
from models import db, AdminUser, Photo
from services import events, identity
from utils import cache, clock


class FrozenClock:
    """Stands in for utils.clock.utcnow; moves only when told to"""

    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture()
def app():
    app = create_app(TestingConfig)
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture(autouse=True)
def frozen_clock(monkeypatch):
    frozen = FrozenClock(datetime(2026, 3, 1, 12, 0, 0))
    monkeypatch.setattr(clock, "utcnow", frozen)
    return frozen


@pytest.fixture()
def fake_redis(monkeypatch):
    client = fakeredis.FakeRedis(decode_responses=True)
    monkeypatch.setattr(cache, "redis_client", client)
    return client


@pytest.fixture()
def collected_events():
    collected = []
    unsubscribe = events.bus.subscribe(collected.append)
    yield collected
    unsubscribe()


@pytest.fixture()
def make_user(app):
    def factory(name="Test User", banned=False, suspended=False, active=True, email=None):
        user = identity.create_user(
            name=name,
            external_id=f"user_{uuid.uuid4().hex[:12]}",
            email=email,
        )
        user.is_banned = banned
        user.is_suspended = suspended
        user.is_active = active and not banned and not suspended
        db.session.commit()
        return user
    return factory


@pytest.fixture()
def make_admin(make_user):
    def factory(role="moderator", name=None):
        user = make_user(name=name or role)
        db.session.add(AdminUser(user_id=user.id, role=role, is_active=True))
        db.session.commit()
        return user
    return factory


@pytest.fixture()
def make_match(app):
    """Two users who liked each other"""
    from services import swipes

    def factory(a, b):
        swipes.record_swipe(a.id, b.id, 'like')
        return swipes.record_swipe(b.id, a.id, 'like').match
    return factory


@pytest.fixture()
def approved_photo(app):
    def factory(user):
        photo = Photo(user_id=user.id, file_key=f"photos/{user.id}/profile.jpg", is_approved=True)
        db.session.add(photo)
        db.session.commit()
        return photo
    return factory


@pytest.fixture()
def auth(monkeypatch):
    """Bearer tokens are the Clerk subject itself"""
    monkeypatch.setattr(auth_middleware, "_decode_token", lambda token: {"sub": token})

    def headers(user, **extra):
        return {"Authorization": f"Bearer {user.external_id}", **extra}
    return headers
