from __future__ import annotations

import uuid
from collections.abc import Generator

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from salescrm import audit
from salescrm.business.deals.models import Deal
from salescrm.business.users.models import User
from salescrm.core.database import Base
from salescrm.crm.enums import Role
from salescrm.platform.security.context import AuthContext
from salescrm.platform.security.errors import ForbiddenError
from salescrm.platform.security.rls import (
    AccessScope,
    apply_scope_filter,
    ensure_owner_visible,
    resolve_owner_filter,
    resolve_scope,
)
import salescrm.models  # noqa: F401


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
def clear_audit() -> Generator[None, None, None]:
    audit.audit_entries.clear()
    yield
    audit.audit_entries.clear()


def _user(session: Session, email: str, role: Role, manager: User | None = None) -> User:
    user = User(
        email=email,
        password_hash="not-used",
        first_name=email.split("@")[0],
        last_name="Tester",
        role=role.value,
        manager_id=manager.id if manager else None,
    )
    session.add(user)
    session.commit()
    return user


@pytest.fixture()
def team(db_session: Session) -> dict[str, User]:
    admin = _user(db_session, "admin@acme.com", Role.SUPER_ADMIN)
    m1 = _user(db_session, "m1@acme.com", Role.MANAGER)
    m2 = _user(db_session, "m2@acme.com", Role.MANAGER)
    e1 = _user(db_session, "e1@acme.com", Role.EMPLOYEE, m1)
    e2 = _user(db_session, "e2@acme.com", Role.EMPLOYEE, m1)
    e3 = _user(db_session, "e3@acme.com", Role.EMPLOYEE, m2)
    return {"admin": admin, "m1": m1, "m2": m2, "e1": e1, "e2": e2, "e3": e3}


def _ctx(user: User) -> AuthContext:
    return AuthContext(user_id=user.id, role=Role(user.role), manager_id=user.manager_id)


def test_employee_scope_is_self(db_session: Session, team: dict[str, User]) -> None:
    scope = resolve_scope(db_session, _ctx(team["e1"]))
    assert scope.owner_ids == frozenset({team["e1"].id})


def test_manager_scope_is_self_plus_direct_reports(db_session: Session, team: dict[str, User]) -> None:
    scope = resolve_scope(db_session, _ctx(team["m1"]))
    assert scope.owner_ids == frozenset({team["m1"].id, team["e1"].id, team["e2"].id})
    assert not scope.allows(team["e3"].id)


def test_manager_scope_excludes_reports_of_reports(db_session: Session, team: dict[str, User]) -> None:
    nested = _user(db_session, "nested@acme.com", Role.EMPLOYEE, team["e1"])

    scope = resolve_scope(db_session, _ctx(team["m1"]))
    assert nested.id not in scope.owner_ids
    assert scope.owner_ids == frozenset({team["m1"].id, team["e1"].id, team["e2"].id})


def test_manager_without_reports_sees_only_self(db_session: Session) -> None:
    lonely = _user(db_session, "solo@acme.com", Role.MANAGER)
    assert resolve_scope(db_session, _ctx(lonely)).owner_ids == frozenset({lonely.id})


def test_super_admin_scope_is_unrestricted(db_session: Session, team: dict[str, User]) -> None:
    scope = resolve_scope(db_session, _ctx(team["admin"]))
    assert scope.unrestricted
    assert scope.allows(team["e3"].id)


def test_unknown_role_is_rejected(db_session: Session) -> None:
    ctx = AuthContext(user_id=uuid.uuid4(), role="AUDITOR")
    with pytest.raises(ForbiddenError):
        resolve_scope(db_session, ctx)


def test_scope_is_cached_per_context(db_session: Session, team: dict[str, User]) -> None:
    ctx = _ctx(team["m1"])
    first = resolve_scope(db_session, ctx)
    _user(db_session, "late@acme.com", Role.EMPLOYEE, team["m1"])
    assert resolve_scope(db_session, ctx) is first


def test_employee_owner_filter_is_ignored(db_session: Session, team: dict[str, User]) -> None:
    scope = resolve_owner_filter(db_session, _ctx(team["e1"]), team["e2"].id)
    assert scope.owner_ids == frozenset({team["e1"].id})


def test_manager_owner_filter_intersects_team(db_session: Session, team: dict[str, User]) -> None:
    ctx = _ctx(team["m1"])
    assert resolve_owner_filter(db_session, ctx, team["e2"].id).owner_ids == frozenset({team["e2"].id})
    assert resolve_owner_filter(db_session, ctx, team["e3"].id).owner_ids == frozenset()


def test_super_admin_owner_filter_applies_as_is(db_session: Session, team: dict[str, User]) -> None:
    scope = resolve_owner_filter(db_session, _ctx(team["admin"]), team["e3"].id)
    assert scope.owner_ids == frozenset({team["e3"].id})
    assert resolve_owner_filter(db_session, _ctx(team["admin"]), None).unrestricted


def test_empty_scope_matches_nothing(db_session: Session, team: dict[str, User]) -> None:
    db_session.add(Deal(title="Visible", value=10, owner_id=team["e1"].id))
    db_session.commit()

    stmt = apply_scope_filter(select(Deal), Deal.owner_id, AccessScope(frozenset()))
    assert db_session.scalars(stmt).all() == []
    assert len(db_session.scalars(apply_scope_filter(select(Deal), Deal.owner_id, AccessScope(None))).all()) == 1


def test_out_of_scope_owner_is_denied_and_audited(db_session: Session, team: dict[str, User]) -> None:
    ctx = _ctx(team["m1"])
    with pytest.raises(ForbiddenError):
        ensure_owner_visible(
            db_session,
            ctx,
            resource="deals.deal",
            entity_id="deal-1",
            owner_id=team["e3"].id,
            action="update",
        )

    denials = [entry for entry in audit.audit_entries if entry["action"] == "scope.denied"]
    assert len(denials) == 1
    assert denials[0]["after"]["resource"] == "deals.deal"

    ensure_owner_visible(db_session, ctx, resource="deals.deal", entity_id="deal-2", owner_id=team["e2"].id)
