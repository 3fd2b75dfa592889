from __future__ import annotations

from collections.abc import Generator
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from salescrm import audit, events
from salescrm.business.deals.schemas import DealCreate, DealUpdate
from salescrm.business.deals.service import DealsService
from salescrm.business.users.models import User
from salescrm.core.database import Base
from salescrm.crm.enums import DealStage, Role
from salescrm.crm.models import Lead
from salescrm.platform.security.context import AuthContext
from salescrm.platform.security.errors import ForbiddenError, NotFoundError
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
def clear_stubs() -> Generator[None, None, None]:
    audit.audit_entries.clear()
    events.published_events.clear()
    yield
    audit.audit_entries.clear()
    events.published_events.clear()


def _user(session: Session, name: str, role: Role, manager: User | None = None) -> User:
    user = User(
        email=f"{name}@acme.com",
        password_hash="not-used",
        first_name=name.upper(),
        last_name="Sales",
        role=role.value,
        manager_id=manager.id if manager else None,
    )
    session.add(user)
    session.commit()
    return user


@pytest.fixture()
def team(db_session: Session) -> dict[str, User]:
    admin = _user(db_session, "admin", Role.SUPER_ADMIN)
    m1 = _user(db_session, "m1", Role.MANAGER)
    m2 = _user(db_session, "m2", Role.MANAGER)
    e1 = _user(db_session, "e1", Role.EMPLOYEE, m1)
    e2 = _user(db_session, "e2", Role.EMPLOYEE, m1)
    e3 = _user(db_session, "e3", Role.EMPLOYEE, m2)
    return {"admin": admin, "m1": m1, "m2": m2, "e1": e1, "e2": e2, "e3": e3}


def _ctx(user: User) -> AuthContext:
    return AuthContext(user_id=user.id, role=Role(user.role), manager_id=user.manager_id, correlation_id="corr-deals")


def _deal(service: DealsService, session: Session, admin: User, owner: User, title: str, **overrides):
    payload = DealCreate(title=title, value=Decimal(overrides.pop("value", "100")), owner_id=owner.id, **overrides)
    return service.create_deal(session, _ctx(admin), payload)


def test_manager_sees_union_of_team_deals(db_session: Session, team: dict[str, User]) -> None:
    service = DealsService()
    for key in ("m1", "e1", "e2", "e3", "m2", "admin"):
        _deal(service, db_session, team["admin"], team[key], f"deal-{key}")

    visible = service.list_deals(db_session, _ctx(team["m1"]))
    assert {row.title for row in visible} == {"deal-m1", "deal-e1", "deal-e2"}

    filtered = service.list_deals(db_session, _ctx(team["m1"]), owner_id=team["e2"].id)
    assert [row.title for row in filtered] == ["deal-e2"]
    assert service.list_deals(db_session, _ctx(team["m1"]), owner_id=team["e3"].id) == []


def test_manager_does_not_see_deals_of_reports_of_reports(db_session: Session, team: dict[str, User]) -> None:
    service = DealsService()
    nested = _user(db_session, "nested", Role.EMPLOYEE, team["e1"])
    _deal(service, db_session, team["admin"], team["e1"], "deal-e1")
    hidden = _deal(service, db_session, team["admin"], nested, "deal-nested")

    visible = service.list_deals(db_session, _ctx(team["m1"]))
    assert [row.title for row in visible] == ["deal-e1"]
    assert service.list_deals(db_session, _ctx(team["m1"]), owner_id=nested.id) == []
    with pytest.raises(ForbiddenError):
        service.get_deal(db_session, _ctx(team["m1"]), hidden.id)


def test_employee_sees_only_own_deals_and_ignores_owner_filter(db_session: Session, team: dict[str, User]) -> None:
    service = DealsService()
    _deal(service, db_session, team["admin"], team["e1"], "mine")
    _deal(service, db_session, team["admin"], team["e2"], "theirs")

    rows = service.list_deals(db_session, _ctx(team["e1"]), owner_id=team["e2"].id)
    assert [row.title for row in rows] == ["mine"]


def test_super_admin_sees_everything(db_session: Session, team: dict[str, User]) -> None:
    service = DealsService()
    for key in ("e1", "e3"):
        _deal(service, db_session, team["admin"], team[key], f"deal-{key}")
    assert len(service.list_deals(db_session, _ctx(team["admin"]))) == 2


def test_employee_always_owns_created_deals(db_session: Session, team: dict[str, User]) -> None:
    service = DealsService()
    deal = service.create_deal(
        db_session,
        _ctx(team["e1"]),
        DealCreate(title="Self", value=Decimal("50"), owner_id=team["e2"].id),
    )
    assert deal.owner_id == team["e1"].id
    assert deal.probability == 10


def test_manager_cannot_assign_outside_team(db_session: Session, team: dict[str, User]) -> None:
    service = DealsService()
    with pytest.raises(ForbiddenError):
        service.create_deal(
            db_session,
            _ctx(team["m1"]),
            DealCreate(title="Poach", value=Decimal("50"), owner_id=team["e3"].id),
        )

    deal = service.create_deal(
        db_session,
        _ctx(team["m1"]),
        DealCreate(title="Delegate", value=Decimal("50"), owner_id=team["e1"].id),
    )
    assert deal.owner_id == team["e1"].id


def test_out_of_scope_deal_is_forbidden(db_session: Session, team: dict[str, User]) -> None:
    service = DealsService()
    deal = _deal(service, db_session, team["admin"], team["e3"], "hidden")

    with pytest.raises(ForbiddenError):
        service.get_deal(db_session, _ctx(team["m1"]), deal.id)
    with pytest.raises(ForbiddenError):
        service.update_stage(db_session, _ctx(team["e1"]), deal.id, DealStage.PROPOSAL)


def test_stage_updates_drive_probability_and_close_date(db_session: Session, team: dict[str, User]) -> None:
    service = DealsService()
    deal = _deal(service, db_session, team["admin"], team["e1"], "pipeline")

    won = service.update_stage(db_session, _ctx(team["e1"]), deal.id, DealStage.CLOSED_WON)
    assert won.probability == 100
    assert won.actual_close_date is not None

    reopened = service.update_deal(db_session, _ctx(team["e1"]), deal.id, DealUpdate(stage="NEGOTIATION"))
    assert reopened.probability == 75
    assert reopened.actual_close_date is None

    custom = service.update_deal(db_session, _ctx(team["e1"]), deal.id, DealUpdate(stage="PROPOSAL", probability=40))
    assert custom.probability == 40

    changes = [item for item in events.published_events if item["event_type"] == "deals.deal.stage_changed"]
    assert changes and changes[0]["stage"] == "CLOSED_WON"


def test_general_update_with_unchanged_stage_keeps_probability(db_session: Session, team: dict[str, User]) -> None:
    service = DealsService()
    deal = _deal(service, db_session, team["admin"], team["e1"], "custom odds", stage="PROPOSAL", probability=60)
    assert deal.probability == 60

    renamed = service.update_deal(db_session, _ctx(team["e1"]), deal.id, DealUpdate(stage="PROPOSAL", title="renamed"))
    assert renamed.title == "renamed"
    assert renamed.stage == "PROPOSAL"
    assert renamed.probability == 60

    moved = service.update_deal(db_session, _ctx(team["e1"]), deal.id, DealUpdate(stage="NEGOTIATION"))
    assert moved.probability == 75


def test_delete_rules(db_session: Session, team: dict[str, User]) -> None:
    service = DealsService()
    own = _deal(service, db_session, team["admin"], team["e1"], "own")
    foreign = _deal(service, db_session, team["admin"], team["e3"], "foreign")

    with pytest.raises(ForbiddenError, match="Employees cannot delete deals"):
        service.delete_deal(db_session, _ctx(team["e1"]), own.id)
    with pytest.raises(ForbiddenError):
        service.delete_deal(db_session, _ctx(team["m1"]), foreign.id)

    service.delete_deal(db_session, _ctx(team["m1"]), own.id)
    with pytest.raises(NotFoundError):
        service.get_deal(db_session, _ctx(team["admin"]), own.id)


def test_create_from_lead_links_lead(db_session: Session, team: dict[str, User]) -> None:
    service = DealsService()
    lead = Lead(first_name="Priya", last_name="Shah", assignee_id=team["e1"].id)
    db_session.add(lead)
    db_session.commit()

    deal = service.create_from_lead(db_session, _ctx(team["e1"]), lead.id, DealCreate(title="From lead", value=Decimal("10")))
    assert deal.lead_id == lead.id


def test_deal_stats_include_every_stage(db_session: Session, team: dict[str, User]) -> None:
    service = DealsService()
    _deal(service, db_session, team["admin"], team["e1"], "won-a", value="100", stage="CLOSED_WON")
    _deal(service, db_session, team["admin"], team["e1"], "won-b", value="200", stage="CLOSED_WON")
    _deal(service, db_session, team["admin"], team["e3"], "other", value="900", stage="PROPOSAL")

    stats = service.deal_stats(db_session, _ctx(team["m1"]))
    assert stats.total_deals == 2
    assert stats.won_deals == 2
    assert stats.won_value == Decimal("300.00")
    assert set(stats.by_stage) == {stage.value for stage in DealStage}
    assert stats.by_stage["PROPOSAL"].count == 0
    assert stats.by_stage["PROPOSAL"].value == Decimal("0")

    empty = service.deal_stats(db_session, _ctx(team["e2"]))
    assert empty.total_deals == 0
    assert empty.total_value == Decimal("0")


def test_pipeline_groups_by_stage(db_session: Session, team: dict[str, User]) -> None:
    service = DealsService()
    _deal(service, db_session, team["admin"], team["e1"], "early")
    _deal(service, db_session, team["admin"], team["e1"], "late", stage="NEGOTIATION")

    grouped = service.pipeline(db_session, _ctx(team["e1"]))
    assert [row.title for row in grouped["QUALIFICATION"]] == ["early"]
    assert [row.title for row in grouped["NEGOTIATION"]] == ["late"]
    assert grouped["CLOSED_LOST"] == []
