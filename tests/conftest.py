"""
Shared pytest fixtures for the Hostel Ticketing Platform test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - student / admin: Pre-created actors
    - as_user: builds the X-User-Id header for API calls
"""

import pytest

from hostel_tickets import create_app
from hostel_tickets.models import db as _db
from hostel_tickets.models.user import User
from hostel_tickets.services import cache_service


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        # ids are reused after every rebuild; cached mapping snapshots
        # would otherwise point at rows from the previous test.
        cache_service.clear_all()
        yield
        cache_service.clear_all()
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def student():
    u = User(email="student@hostel.test", full_name="Test Student", role="STUDENT")
    _db.session.add(u)
    _db.session.commit()
    return u


@pytest.fixture()
def admin():
    u = User(email="admin@hostel.test", full_name="Test Admin", role="ADMIN",
             staff_vertical="ADMIN_OFFICER")
    _db.session.add(u)
    _db.session.commit()
    return u


@pytest.fixture()
def as_user():
    """Return a helper producing request headers for a given user."""

    def _headers(user):
        return {"X-User-Id": str(user.id)}

    return _headers
