from __future__ import annotations

import uuid
from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from jose import jwt
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app import audit, events
from app.core.config import get_settings
from app.core.database import Base, get_db
from app.lots.models import Tree, TreeLot
from app.lots.seed import lot_seed_helper
from app.main import app


WORKSPACE = "ws-api-1"


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def setup_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("NOTIFICATION_BACKEND", "events")
    audit.audit_entries.clear()
    events.published_events.clear()
    get_settings.cache_clear()
    yield
    audit.audit_entries.clear()
    events.published_events.clear()
    get_settings.cache_clear()


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app, headers={"x-workspace-id": WORKSPACE}) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _seed(db_session: Session, *, capacity: int = 2, occupied: int = 2) -> tuple[TreeLot, TreeLot, Tree]:
    full = lot_seed_helper.ensure_lot(
        db_session, workspace_id=WORKSPACE, lot_code="N-1", lot_name="North", capacity=capacity
    )
    spare = lot_seed_helper.ensure_lot(
        db_session, workspace_id=WORKSPACE, lot_code="S-1", lot_name="South", capacity=10
    )
    lot_seed_helper.plant_trees(db_session, full, workspace_id=WORKSPACE, count=occupied)
    tree = lot_seed_helper.plant_trees(db_session, spare, workspace_id=WORKSPACE, count=1, code_prefix="S")[0]
    db_session.commit()
    return full, spare, tree


def test_list_lots_returns_workspace_lots(client: TestClient, db_session: Session) -> None:
    _seed(db_session)
    lot_seed_helper.ensure_lot(db_session, workspace_id="ws-other", lot_code="Z-1", lot_name="Hidden", capacity=1)
    db_session.commit()

    response = client.get("/api/lots")

    assert response.status_code == 200
    body = response.json()
    assert [item["lot_name"] for item in body] == ["North", "South"]
    assert [item["tree_count"] for item in body] == [2, 1]


def test_get_lot_detail_and_not_found_envelope(client: TestClient, db_session: Session) -> None:
    full, _, _ = _seed(db_session)

    detail = client.get(f"/api/lots/{full.id}")
    assert detail.status_code == 200
    assert len(detail.json()["trees"]) == 2

    missing_id = uuid.uuid4()
    response = client.get(f"/api/lots/{missing_id}", headers={"X-Correlation-Id": "lots-404"})
    assert response.status_code == 404
    assert response.json() == {
        "code": "lot_not_found",
        "message": "lot not found",
        "details": {"entity": "lot", "id": str(missing_id)},
        "correlation_id": "lots-404",
    }


def test_reassign_tree_into_full_lot_returns_capacity_error(client: TestClient, db_session: Session) -> None:
    full, spare, tree = _seed(db_session)

    response = client.put(f"/api/trees/{tree.id}/lot", json={"lot_id": str(full.id)})

    assert response.status_code == 400
    body = response.json()
    assert body["code"] == "lot_capacity_exceeded"
    assert body["message"] == "Lot North is at full capacity (2)"
    assert body["details"]["attempted_occupancy"] == 3
    assert db_session.scalar(select(Tree.tree_lot_id).where(Tree.id == tree.id)) == spare.id


def test_reassign_tree_moves_tree(client: TestClient, db_session: Session) -> None:
    full, spare, tree = _seed(db_session, capacity=3)

    response = client.put(f"/api/trees/{tree.id}/lot", json={"lot_id": str(full.id)})

    assert response.status_code == 200
    body = response.json()
    assert body["tree_lot_id"] == str(full.id)
    assert body["tree_lot"]["planted_count"] == 3
    assert db_session.scalar(select(TreeLot.planted_count).where(TreeLot.id == spare.id)) == 0


def test_reassign_unknown_tree_returns_404(client: TestClient, db_session: Session) -> None:
    full, _, _ = _seed(db_session)

    response = client.put(f"/api/trees/{uuid.uuid4()}/lot", json={"lot_id": str(full.id)})

    assert response.status_code == 404
    assert response.json()["code"] == "tree_not_found"


def test_reassign_rejects_malformed_lot_id(client: TestClient, db_session: Session) -> None:
    _, _, tree = _seed(db_session)

    response = client.put(f"/api/trees/{tree.id}/lot", json={"lot_id": "not-a-uuid"})

    assert response.status_code == 422


def test_assign_operator_publishes_event(client: TestClient, db_session: Session) -> None:
    full, _, _ = _seed(db_session)
    operator_id = uuid.uuid4()

    response = client.put(
        f"/api/lots/{full.id}/operator",
        json={"operator_id": str(operator_id)},
        headers={"X-Correlation-Id": "assign-1"},
    )

    assert response.status_code == 200
    assert response.json()["assigned_operator_id"] == str(operator_id)

    published = [item for item in events.published_events if item["event_type"] == "lots.operator_assigned"]
    assert len(published) == 1
    assert published[0]["correlation_id"] == "assign-1"
    assert published[0]["workspace_id"] == WORKSPACE
    assert published[0]["payload"]["operator_id"] == str(operator_id)
    assert published[0]["payload"]["lot"]["occupancy"] == 2


def test_assign_operator_unknown_lot_returns_404(client: TestClient) -> None:
    response = client.put(f"/api/lots/{uuid.uuid4()}/operator", json={"operator_id": str(uuid.uuid4())})

    assert response.status_code == 404
    assert response.json()["code"] == "lot_not_found"


def test_reconcile_endpoint_reports_corrections(client: TestClient, db_session: Session) -> None:
    full, _, _ = _seed(db_session)
    full.planted_count = 0
    db_session.commit()

    response = client.post("/api/lots/reconcile")

    assert response.status_code == 200
    body = response.json()
    assert body["checked"] == 2
    assert body["corrections"] == [
        {"lot_id": str(full.id), "lot_code": "N-1", "previous": 0, "current": 2, "over_capacity": False}
    ]


def test_workspace_falls_back_to_token_claim(db_session: Session) -> None:
    lot_seed_helper.ensure_lot(db_session, workspace_id="ws-claim", lot_code="C-1", lot_name="Claimed", capacity=1)
    db_session.commit()
    token = jwt.encode(
        {"sub": "claim-user", "roles": ["user"], "workspace_id": "ws-claim"},
        get_settings().jwt_secret,
        algorithm=get_settings().jwt_algorithm,
    )

    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    try:
        with TestClient(app) as test_client:
            response = test_client.get("/api/lots", headers={"Authorization": f"Bearer {token}"})
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 200
    assert [item["lot_code"] for item in response.json()] == ["C-1"]
