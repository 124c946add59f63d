"""Companies, missions and memberships for local development and tests."""

from __future__ import annotations

import logging
from typing import Iterable, Tuple

from sqlalchemy import select
from sqlalchemy.orm import Session

from .models import Company, Mission, MissionCompany, UserCompany

logger = logging.getLogger(__name__)


def add_company(db: Session, name: str) -> Company:
    company = Company(name=name)
    db.add(company)
    db.flush()
    return company


def add_mission(
    db: Session,
    name: str,
    companies: Iterable[Company],
    currency: str = "EUR",
    role: str = "independent",
) -> Mission:
    mission = Mission(name=name, currency=currency)
    db.add(mission)
    db.flush()
    for company in companies:
        db.add(MissionCompany(mission_id=mission.id, company_id=company.id, role=role))
    db.flush()
    return mission


def add_membership(db: Session, user_id: str, company: Company, role: str = "independent") -> UserCompany:
    existing = db.scalars(
        select(UserCompany).where(UserCompany.user_id == user_id, UserCompany.company_id == company.id)
    ).first()
    if existing is not None:
        return existing
    membership = UserCompany(user_id=user_id, company_id=company.id, role=role)
    db.add(membership)
    db.flush()
    return membership


def seed_demo(db: Session, user_id: str = "demo-user") -> Tuple[Company, Mission]:
    company = add_company(db, "Demo Consulting")
    mission = add_mission(db, "Demo mission", [company])
    add_membership(db, user_id, company)
    logger.info("Seeded company %s and mission %s for user %s", company.id, mission.id, user_id)
    return company, mission
