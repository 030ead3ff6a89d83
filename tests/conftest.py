"""Pytest configuration and shared fixtures for all tests."""

import os
import sys
import tempfile
from decimal import Decimal
from pathlib import Path
from types import SimpleNamespace

# Minimal environment for importing config and logger
os.environ.setdefault("SECRET_KEY", "test_secret_key_for_testing_only")
os.environ.setdefault("LOG_DIR", os.path.join(tempfile.gettempdir(), "mcnmart-test-logs"))
os.environ.setdefault("FLASK_ENV", "production")

# Project root on PYTHONPATH
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

import pytest

from app import create_app
from config import TestingConfig
from extensions import db
from models import User, CommissionSetting, TransactionType
from commission.rates import CommissionRateHelper
from commission.ledger import LedgerHelper

PASSWORD = "secret123"


# ==========================================================
# Application / database
# ==========================================================
@pytest.fixture
def app():
    """Fresh app on an in-memory SQLite database. No context is left pushed."""
    app = create_app(TestingConfig)
    with app.app_context():
        db.create_all()
    CommissionRateHelper.clear_cache()
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()
    CommissionRateHelper.clear_cache()


@pytest.fixture
def ctx(app):
    """Application context for tests that call helpers directly."""
    with app.app_context():
        yield app
        db.session.remove()


def _create_user(name, counter, sponsor_code=None, role="user", is_active=True, referral_code=None):
    counter["n"] += 1
    user = User(
        name=name,
        email=f"{name.lower()}-{counter['n']}@example.com",
        role=role,
        is_active=is_active,
        referral_code=referral_code or f"{name.upper()}{counter['n']:04d}",
        referred_by=sponsor_code,
    )
    user.set_password(PASSWORD)
    db.session.add(user)
    db.session.commit()
    return user


def _replace_rates(rates, inactive=()):
    CommissionSetting.query.delete()
    for level, rate in rates.items():
        db.session.add(CommissionSetting(
            level=level,
            rate=Decimal(str(rate)),
            description=f"Level {level}",
            is_active=level not in inactive,
        ))
    db.session.commit()
    CommissionRateHelper.clear_cache()


def _fund(user_id, amount):
    LedgerHelper.post_transaction(user_id, TransactionType.ADJUSTMENT.value, amount, description="Test funding")
    db.session.commit()


# ==========================================================
# Factories used inside an app context (service-level tests)
# ==========================================================
@pytest.fixture
def make_user(ctx):
    """make_user("U2", sponsor=u1) creates a committed user under `sponsor`."""
    counter = {"n": 0}

    def _make_user(name, sponsor=None, role="user", is_active=True, referral_code=None, referred_by=None):
        sponsor_code = referred_by if referred_by is not None else (sponsor.referral_code if sponsor else None)
        return _create_user(name, counter, sponsor_code, role, is_active, referral_code)

    return _make_user


@pytest.fixture
def make_chain(make_user):
    """make_chain(n) returns [root, child, grandchild, ...] of length n."""

    def _make_chain(length, prefix="C"):
        chain = []
        sponsor = None
        for i in range(length):
            sponsor = make_user(f"{prefix}{i}", sponsor=sponsor)
            chain.append(sponsor)
        return chain

    return _make_chain


@pytest.fixture
def set_rates(ctx):
    """set_rates({1: "15", 2: "10"}, inactive={2}) replaces the rate table."""
    return _replace_rates


@pytest.fixture
def default_rates(ctx):
    return CommissionRateHelper.seed_defaults()


@pytest.fixture
def fund(ctx):
    """fund(user, "5000") credits the user through the ledger."""

    def _fund_user(user, amount):
        _fund(user.id, amount)
        db.session.refresh(user)
        return user

    return _fund_user


# ==========================================================
# HTTP-level helpers (each call opens its own app context)
# ==========================================================
@pytest.fixture
def seed(app):
    """
    Data setup for API tests. Returns plain namespaces instead of ORM objects
    so nothing is tied to a session that outlives its context.
    """
    counter = {"n": 0}

    def user(name, sponsor=None, role="user", is_active=True, referred_by=None):
        sponsor_code = referred_by if referred_by is not None else (sponsor.referral_code if sponsor else None)
        with app.app_context():
            created = _create_user(name, counter, sponsor_code, role, is_active)
            return SimpleNamespace(id=created.id, email=created.email, referral_code=created.referral_code)

    def rates(values, inactive=()):
        with app.app_context():
            _replace_rates(values, inactive)

    def fund(user_ns, amount):
        with app.app_context():
            _fund(user_ns.id, amount)

    def plans():
        from commission.purchases import PurchaseHelper
        with app.app_context():
            PurchaseHelper.seed_plans()

    return SimpleNamespace(user=user, rates=rates, fund=fund, plans=plans)


@pytest.fixture
def login_as(app):
    """login_as(user) returns a fresh test client with that user logged in."""

    def _login_as(user, password=PASSWORD):
        client = app.test_client()
        response = client.post("/api/login", json={"email": user.email, "password": password})
        assert response.status_code == 200, response.get_json()
        return client

    return _login_as


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def admin_client(seed, login_as):
    return login_as(seed.user("Admin", role="admin"))
