from __future__ import annotations

import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("LOG_JSON", "false")
os.environ.setdefault("TIMEZONE", "UTC")

import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import date, timedelta

import fakeredis
import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

import compound_access.models  # noqa: F401
from compound_access.core.actor import ActorContext
from compound_access.core.deps import get_db
from compound_access.core.rate_limit import SlidingWindowRateLimiter
from compound_access.core.security import create_access_token
from compound_access.core.timeutil import utcnow
from compound_access.db.base import Base
from compound_access.db.session import make_engine
from compound_access.main import create_app
from compound_access.models.access_token import AccessToken
from compound_access.models.billing import Payment, Season, Service
from compound_access.models.compound import Compound
from compound_access.models.unit import Unit, UnitUser
from compound_access.models.user import User
from compound_access.services.entitlement_resolver import REQUIRED_SERVICES
from compound_access.services.notification_dispatcher import NotificationDispatcher
from compound_access.services.token_minter import generate_secret, hash_secret


class RecordingTransport:
    def __init__(self):
        self.sent: list[dict] = []
        self.undeliverable: set[str] = set()
        self._lock = threading.Lock()

    def send(self, device_token, title, body, data):
        with self._lock:
            self.sent.append({"device_token": device_token, "title": title, "body": body, "data": dict(data)})

    def is_deliverable(self, device_token):
        return device_token not in self.undeliverable


class FailingTransport:
    def __init__(self):
        self.calls = 0

    def send(self, device_token, title, body, data):
        self.calls += 1
        raise RuntimeError("push gateway down")


@dataclass
class World:
    compound: Compound
    other_compound: Compound
    season: Season
    unit: Unit
    other_unit: Unit
    owner: User
    neighbour: User
    guard: User
    manager: User
    outsider_guard: User
    services: dict[str, Service]

    def actor(self, user: User) -> ActorContext:
        return ActorContext(user_id=user.id, compound_id=user.compound_id, role=user.role)


@pytest.fixture
def engine(tmp_path):
    eng = make_engine(f"sqlite:///{tmp_path / 'access.db'}")
    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def world(db) -> World:
    compound = Compound(name="Palm Hills")
    other_compound = Compound(name="Marina Bay")
    db.add_all([compound, other_compound])
    db.flush()

    today = date.today()
    season = Season(compound_id=compound.id, name="Summer", start_date=today - timedelta(days=30), end_date=today + timedelta(days=60), is_active=True)
    db.add(season)

    unit = Unit(compound_id=compound.id, unit_number="A-101")
    other_unit = Unit(compound_id=compound.id, unit_number="B-202")
    db.add_all([unit, other_unit])
    db.flush()

    owner = User(compound_id=compound.id, name="Mona Owner", role="owner", device_token="device-owner")
    neighbour = User(compound_id=compound.id, name="Nabil Neighbour", role="owner", device_token="device-neighbour")
    guard = User(compound_id=compound.id, name="Gate Guard", role="security")
    manager = User(compound_id=compound.id, name="Maya Manager", role="management", device_token="device-manager")
    outsider_guard = User(compound_id=other_compound.id, name="Other Guard", role="security")
    db.add_all([owner, neighbour, guard, manager, outsider_guard])
    db.flush()

    db.add(UnitUser(unit_id=unit.id, user_id=owner.id, relationship_kind="owner", is_primary=True))
    db.add(UnitUser(unit_id=other_unit.id, user_id=neighbour.id, relationship_kind="tenant", is_primary=True))

    services = {}
    for name in sorted(set(REQUIRED_SERVICES.values())):
        services[name] = Service(compound_id=compound.id, name=name)
        db.add(services[name])
    db.commit()

    return World(
        compound=compound,
        other_compound=other_compound,
        season=season,
        unit=unit,
        other_unit=other_unit,
        owner=owner,
        neighbour=neighbour,
        guard=guard,
        manager=manager,
        outsider_guard=outsider_guard,
        services=services,
    )


def set_payment(db, world: World, service_name: str, status: str, *, unit: Unit | None = None, season: Season | None = None) -> Payment:
    unit = unit or world.unit
    season = season or world.season
    service = world.services[service_name]
    payment = db.query(Payment).filter_by(unit_id=unit.id, service_id=service.id, season_id=season.id).one_or_none()
    if payment is None:
        payment = Payment(unit_id=unit.id, service_id=service.id, season_id=season.id, amount=1500, due_date=season.start_date + timedelta(days=14))
        db.add(payment)
    payment.status = status
    db.commit()
    return payment


def make_token(db, world: World, **overrides) -> tuple[AccessToken, str]:
    """Insert a token row directly, bypassing the minter's window checks."""
    secret = generate_secret()
    now = utcnow()
    values = dict(
        owner_user_id=world.owner.id,
        unit_id=world.unit.id,
        compound_id=world.compound.id,
        category="visitor",
        secret_hash=hash_secret(secret),
        valid_from=now - timedelta(hours=1),
        valid_to=now + timedelta(hours=23),
        max_uses=1,
        current_uses=0,
        single_use=True,
        active=True,
        visitor_name="Visitor",
        person_count=1,
    )
    values.update(overrides)
    token = AccessToken(**values)
    db.add(token)
    db.commit()
    return token, secret


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def notifier(session_factory, transport):
    dispatcher = NotificationDispatcher(session_factory, transport, executor=ThreadPoolExecutor(max_workers=2))
    yield dispatcher
    dispatcher.shutdown(wait=True)


@pytest.fixture
def redis_client():
    client = fakeredis.FakeRedis()
    yield client
    client.flushall()


@pytest.fixture
def app(session_factory, notifier, redis_client):
    limiter = SlidingWindowRateLimiter(redis_client, "scan", window_seconds=60, max_requests=30)
    application = create_app(notifier=notifier, scan_rate_limiter=limiter)

    def _get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    application.dependency_overrides[get_db] = _get_db
    return application


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


def auth_headers(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user.id)}"}
