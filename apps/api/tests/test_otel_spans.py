from __future__ import annotations

import os
import uuid
from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("OTEL_ENABLED", "true")

from app.core.config import get_settings
from app.core.database import Base, get_db
from app.lots.seed import lot_seed_helper
from app.main import app
from app.otel import setup_inmemory_otel


WORKSPACE = "ws-otel-1"


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
    monkeypatch.setenv("NOTIFICATION_BACKEND", "none")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
def span_exporter() -> InMemorySpanExporter:
    exporter = setup_inmemory_otel("lots-api")
    exporter.clear()
    return exporter


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app, headers={"x-workspace-id": WORKSPACE}) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def test_request_span_contains_correlation_id(client: TestClient, span_exporter: InMemorySpanExporter) -> None:
    response = client.get("/api/lots", headers={"X-Correlation-Id": "otel-corr-1"})
    assert response.status_code == 200

    spans = span_exporter.get_finished_spans()
    assert spans
    assert any(span.attributes.get("correlation_id") == "otel-corr-1" for span in spans)


def test_reassign_span_records_outcome(
    client: TestClient,
    db_session: Session,
    span_exporter: InMemorySpanExporter,
) -> None:
    source = lot_seed_helper.ensure_lot(db_session, workspace_id=WORKSPACE, lot_code="A", lot_name="A", capacity=2)
    target = lot_seed_helper.ensure_lot(db_session, workspace_id=WORKSPACE, lot_code="B", lot_name="B", capacity=2)
    tree = lot_seed_helper.plant_trees(db_session, source, workspace_id=WORKSPACE, count=1)[0]
    db_session.commit()

    response = client.put(
        f"/api/trees/{tree.id}/lot",
        json={"lot_id": str(target.id)},
        headers={"X-Correlation-Id": "otel-move-1"},
    )
    assert response.status_code == 200

    spans = [span for span in span_exporter.get_finished_spans() if span.name == "lots.reassign_tree"]
    assert spans
    assert any(
        span.attributes.get("tree_id") == str(tree.id)
        and span.attributes.get("target_lot_id") == str(target.id)
        and span.attributes.get("outcome") == "moved"
        and span.attributes.get("correlation_id") == "otel-move-1"
        and span.attributes.get("workspace_id") == WORKSPACE
        for span in spans
    )


def test_operator_span_is_recorded(
    client: TestClient,
    db_session: Session,
    span_exporter: InMemorySpanExporter,
) -> None:
    lot = lot_seed_helper.ensure_lot(db_session, workspace_id=WORKSPACE, lot_code="A", lot_name="A", capacity=2)
    db_session.commit()

    response = client.put(f"/api/lots/{lot.id}/operator", json={"operator_id": str(uuid.uuid4())})
    assert response.status_code == 200

    assert any(span.name == "lots.assign_operator" for span in span_exporter.get_finished_spans())
