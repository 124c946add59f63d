from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import Generator

os.environ.setdefault("CRA_SQLITE_PATH", str(Path(tempfile.gettempdir()) / "cratrack-tests" / "app.db"))

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session, sessionmaker

from cratrack import models, services
from cratrack.access import Principal
from cratrack.database import build_engine, get_db
from cratrack.main import app
from cratrack.seed import add_company, add_membership, add_mission


@pytest.fixture(scope="function")
def engine(tmp_path: Path):
    engine = build_engine(f"sqlite:///{tmp_path / 'test.db'}")
    models.Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


@pytest.fixture(scope="function")
def session(session_factory) -> Generator[Session, None, None]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(scope="function")
def client(session_factory) -> Generator[TestClient, None, None]:
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture()
def company(session: Session) -> models.Company:
    company = add_company(session, "Acme Consulting")
    session.commit()
    return company


@pytest.fixture()
def other_company(session: Session) -> models.Company:
    company = add_company(session, "Globex")
    session.commit()
    return company


@pytest.fixture()
def mission(session: Session, company: models.Company) -> models.Mission:
    mission = add_mission(session, "Backend rewrite", [company])
    session.commit()
    return mission


@pytest.fixture()
def second_mission(session: Session, company: models.Company) -> models.Mission:
    mission = add_mission(session, "Data migration", [company])
    session.commit()
    return mission


@pytest.fixture()
def foreign_mission(session: Session, other_company: models.Company) -> models.Mission:
    mission = add_mission(session, "Someone else's mission", [other_company])
    session.commit()
    return mission


@pytest.fixture()
def owner(session: Session, company: models.Company) -> Principal:
    add_membership(session, "user-1", company)
    session.commit()
    return Principal.of("user-1", [company.id])


@pytest.fixture()
def client_reader(session: Session, company: models.Company) -> Principal:
    add_membership(session, "client-1", company, role="client")
    session.commit()
    return Principal.of("client-1", [company.id])


@pytest.fixture()
def outsider(other_company: models.Company) -> Principal:
    return Principal.of("user-2", [other_company.id])


@pytest.fixture()
def draft_report(session: Session, owner: Principal) -> models.ActivityReport:
    result = services.create_report(session, owner, 3, 2026, "EUR")
    assert result.ok
    return result.value


@pytest.fixture()
def headers_for():
    def build(principal: Principal) -> dict[str, str]:
        return {"X-User-Id": principal.user_id, "X-Company-Ids": ",".join(sorted(principal.company_ids))}

    return build
