"""
Shared pytest fixtures for the production tracker test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - stages: the default 12-stage catalog, seeded
    - workflow: a fresh not_started workflow for piece mark "B-101"
"""

import pytest

from piecetrack import create_app
from piecetrack.models import db as _db
from piecetrack.services import stage_catalog


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
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def stages():
    """Seed the default catalog and return it in stage order."""
    stage_catalog.seed_catalog()
    return stage_catalog.list_stages()


@pytest.fixture()
def workflow(stages):
    """A new not_started workflow with its template tasks seeded."""
    from piecetrack.services import workflow_engine
    return workflow_engine.create_workflow("B-101", project_id=7)
