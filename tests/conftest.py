"""
Shared pytest fixtures for the workflow engine test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - organization / other_organization: committed Organization ids
    - build_workflow: factory creating stages and sub-stages
    - standard_workflow: A → B (B1, B2) → C
    - make_item: factory creating an item with its first open history entry
    - auth_headers: factory building Bearer headers for a role

Fixtures return IDs and Position values (not ORM objects): the executor
rolls back the session on per-item failure, which expires loaded objects.
"""

from datetime import timedelta

import pytest

from tracker import create_app
from tracker.models import db as _db
from tracker.models.base import _utcnow
from tracker.models.organization import Organization
from tracker.models.workflow import Item, ItemHistory, Order, Position, WorkflowStage, WorkflowSubStage
from tracker.services.integrity_observability import reset_integrity_events
from tracker.services.jwt_service import generate_access_token


class WorkflowIds:
    """Name → id lookups for a workflow built in a test."""

    def __init__(self):
        self.stages: dict[str, str] = {}
        self.sub_stages: dict[str, str] = {}
        self.positions: dict[str, Position] = {}

    def __getitem__(self, label: str) -> Position:
        return self.positions[label]


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
        reset_integrity_events()
        yield
        reset_integrity_events()
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Domain fixtures ──────────────────────────────────────────────────────


def _create_organization(name, slug):
    org = Organization(name=name, slug=slug)
    _db.session.add(org)
    _db.session.commit()
    return org.id


@pytest.fixture()
def organization():
    return _create_organization("Acme Garments", "acme")


@pytest.fixture()
def other_organization():
    return _create_organization("Beta Textiles", "beta")


@pytest.fixture()
def build_workflow():
    """Factory: build_workflow(org_id, [("A", []), ("B", ["B1", "B2"])]).

    Stages get sequence_order 10, 20, 30 … and sub-stages 1, 2, 3 … so
    gaps are exercised everywhere. Positions are keyed "A", "B/B1", ….
    """

    def _build(org_id, layout):
        ids = WorkflowIds()
        for i, (stage_name, sub_names) in enumerate(layout, start=1):
            stage = WorkflowStage(organization_id=org_id, name=stage_name, sequence_order=i * 10)
            _db.session.add(stage)
            _db.session.flush()
            ids.stages[stage_name] = stage.id
            if not sub_names:
                ids.positions[stage_name] = Position(stage.id)
            for j, sub_name in enumerate(sub_names, start=1):
                sub = WorkflowSubStage(
                    organization_id=org_id, stage_id=stage.id,
                    name=sub_name, sequence_order=j,
                )
                _db.session.add(sub)
                _db.session.flush()
                ids.sub_stages[sub_name] = sub.id
                ids.positions[f"{stage_name}/{sub_name}"] = Position(stage.id, sub.id)
        _db.session.commit()
        return ids

    return _build


@pytest.fixture()
def standard_workflow(organization, build_workflow):
    """A → B (B1, B2) → C for the default organization."""
    return build_workflow(organization, [("A", []), ("B", ["B1", "B2"]), ("C", [])])


@pytest.fixture()
def make_item():
    """Factory: make_item(org_id, position, entered_minutes_ago=60, with_history=True)."""
    counter = {"n": 0}

    def _make(org_id, position, *, entered_minutes_ago=60, with_history=True):
        counter["n"] += 1
        order = Order(organization_id=org_id, order_number=f"ORD-{counter['n']:04d}")
        _db.session.add(order)
        _db.session.flush()

        item = Item(
            organization_id=org_id,
            order_id=order.id,
            current_stage_id=position.stage_id,
            current_sub_stage_id=position.sub_stage_id,
        )
        _db.session.add(item)
        _db.session.flush()

        if with_history:
            _db.session.add(ItemHistory(
                organization_id=org_id,
                item_id=item.id,
                stage_id=position.stage_id,
                sub_stage_id=position.sub_stage_id,
                entered_at=_utcnow() - timedelta(minutes=entered_minutes_ago),
            ))
        _db.session.commit()
        return item.id

    return _make


@pytest.fixture()
def auth_headers(app):
    """Factory: auth_headers(org_id, role="Owner", user_id="user-1")."""

    def _headers(org_id, role="Owner", user_id="user-1"):
        token = generate_access_token(user_id, org_id, role)
        return {"Authorization": f"Bearer {token}"}

    return _headers
