from __future__ import annotations

import uuid
from collections.abc import Generator

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from salescrm import audit, events
from salescrm.business.users.models import User
from salescrm.business.users.schemas import ChangePasswordRequest, ProfileUpdate, UserCreate, UserUpdate
from salescrm.business.users.service import UsersService
from salescrm.core.config import get_settings
from salescrm.core.database import Base
from salescrm.core.security import decode_access_token, hash_password
from salescrm.crm.enums import Role
from salescrm.platform.security.context import AuthContext
from salescrm.platform.security.errors import (
    AuthenticationError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
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
def fast_hashing() -> Generator[None, None, None]:
    settings = get_settings()
    prior = settings.password_hash_rounds
    settings.password_hash_rounds = 4
    audit.audit_entries.clear()
    events.published_events.clear()
    yield
    settings.password_hash_rounds = prior
    audit.audit_entries.clear()
    events.published_events.clear()


def _seed(session: Session, email: str, role: Role, manager: User | None = None, password: str = "secret123") -> User:
    user = User(
        email=email,
        password_hash=hash_password(password),
        first_name=email.split("@")[0].title(),
        last_name="User",
        role=role.value,
        manager_id=manager.id if manager else None,
    )
    session.add(user)
    session.commit()
    return user


def _ctx(user: User) -> AuthContext:
    return AuthContext(user_id=user.id, role=Role(user.role), manager_id=user.manager_id)


@pytest.fixture()
def admin(db_session: Session) -> User:
    return _seed(db_session, "admin@acme.com", Role.SUPER_ADMIN)


@pytest.fixture()
def manager(db_session: Session) -> User:
    return _seed(db_session, "manager@acme.com", Role.MANAGER)


def test_super_admin_creates_employee_under_manager(db_session: Session, admin: User, manager: User) -> None:
    service = UsersService()
    created = service.create_user(
        db_session,
        _ctx(admin),
        UserCreate(email="new@acme.com", password="secret123", first_name="New", last_name="Hire", manager_id=manager.id),
    )

    assert created.role == "EMPLOYEE"
    assert created.manager_id == manager.id
    assert created.is_active
    assert any(item["event_type"] == "users.user.created" for item in events.published_events)


def test_duplicate_email_conflicts(db_session: Session, admin: User) -> None:
    service = UsersService()
    with pytest.raises(ConflictError, match="Email already exists"):
        service.create_user(
            db_session,
            _ctx(admin),
            UserCreate(email="ADMIN@acme.com", password="secret123", first_name="Dup", last_name="Licate"),
        )


def test_manager_creates_employees_for_own_team_only(db_session: Session, admin: User, manager: User) -> None:
    service = UsersService()
    other = _seed(db_session, "other@acme.com", Role.MANAGER)

    created = service.create_user(
        db_session,
        _ctx(manager),
        UserCreate(email="report@acme.com", password="secret123", first_name="Re", last_name="Port"),
    )
    assert created.manager_id == manager.id

    with pytest.raises(ForbiddenError):
        service.create_user(
            db_session,
            _ctx(manager),
            UserCreate(email="boss@acme.com", password="secret123", first_name="Bo", last_name="Ss", role="MANAGER"),
        )
    with pytest.raises(ForbiddenError):
        service.create_user(
            db_session,
            _ctx(manager),
            UserCreate(
                email="stray@acme.com", password="secret123", first_name="St", last_name="Ray", manager_id=other.id
            ),
        )


def test_hierarchy_rules(db_session: Session, admin: User, manager: User) -> None:
    service = UsersService()
    employee = _seed(db_session, "worker@acme.com", Role.EMPLOYEE, manager)
    peer = _seed(db_session, "peer@acme.com", Role.EMPLOYEE)

    with pytest.raises(ValidationError, match="cannot assign manager to super admin"):
        service.assign_manager(db_session, _ctx(admin), admin.id, manager.id)
    other = _seed(db_session, "other@acme.com", Role.MANAGER)
    with pytest.raises(ValidationError, match="cannot assign a manager to another manager"):
        service.assign_manager(db_session, _ctx(admin), other.id, manager.id)
    with pytest.raises(ValidationError):
        service.assign_manager(db_session, _ctx(admin), employee.id, peer.id)
    with pytest.raises(NotFoundError):
        service.assign_manager(db_session, _ctx(admin), employee.id, uuid.uuid4())

    moved = service.assign_manager(db_session, _ctx(admin), peer.id, manager.id)
    assert moved.manager is not None and moved.manager.id == manager.id

    detail = service.get_user(db_session, _ctx(admin), manager.id)
    assert {item.email for item in detail.reports} == {"worker@acme.com", "peer@acme.com"}


def test_demoting_manager_with_reports_is_rejected(db_session: Session, admin: User, manager: User) -> None:
    service = UsersService()
    _seed(db_session, "worker@acme.com", Role.EMPLOYEE, manager)

    with pytest.raises(ValidationError):
        service.update_user(db_session, _ctx(admin), manager.id, UserUpdate(role="EMPLOYEE"))


def test_manager_cannot_change_role_or_status(db_session: Session, manager: User) -> None:
    service = UsersService()
    employee = _seed(db_session, "worker@acme.com", Role.EMPLOYEE, manager)

    with pytest.raises(ForbiddenError):
        service.update_user(db_session, _ctx(manager), employee.id, UserUpdate(is_active=False))

    updated = service.update_user(db_session, _ctx(manager), employee.id, UserUpdate(phone="+91 98765 43210"))
    assert updated.phone == "+91 98765 43210"


def test_manager_lists_only_team(db_session: Session, admin: User, manager: User) -> None:
    service = UsersService()
    _seed(db_session, "worker@acme.com", Role.EMPLOYEE, manager)
    _seed(db_session, "outsider@acme.com", Role.EMPLOYEE)

    emails = {row.email for row in service.list_users(db_session, _ctx(manager))}
    assert emails == {"manager@acme.com", "worker@acme.com"}
    assert len(service.list_users(db_session, _ctx(admin))) == 4
    assert [row.email for row in service.list_users(db_session, _ctx(admin), role="MANAGER")] == ["manager@acme.com"]


def test_deactivate_and_activate(db_session: Session, admin: User, manager: User) -> None:
    service = UsersService()
    with pytest.raises(ValidationError):
        service.deactivate_user(db_session, _ctx(admin), admin.id)

    assert service.deactivate_user(db_session, _ctx(admin), manager.id).is_active is False
    assert service.list_managers(db_session) == []
    assert service.activate_user(db_session, _ctx(admin), manager.id).is_active is True


def test_profile_and_password(db_session: Session, manager: User) -> None:
    service = UsersService()
    ctx = _ctx(manager)

    profile = service.update_profile(db_session, ctx, ProfileUpdate(first_name="Mona"))
    assert profile.first_name == "Mona"
    assert service.get_profile(db_session, ctx).first_name == "Mona"

    with pytest.raises(ValidationError):
        service.change_password(db_session, ctx, ChangePasswordRequest(current_password="wrong", new_password="another1"))

    service.change_password(db_session, ctx, ChangePasswordRequest(current_password="secret123", new_password="another1"))
    token = service.authenticate(db_session, "manager@acme.com", "another1")
    assert token.user.id == manager.id


def test_authenticate(db_session: Session, admin: User, manager: User) -> None:
    service = UsersService()
    employee = _seed(db_session, "worker@acme.com", Role.EMPLOYEE, manager)

    token = service.authenticate(db_session, "Worker@acme.com", "secret123")
    claims = decode_access_token(token.access_token)
    assert claims is not None
    assert claims["sub"] == str(employee.id)
    assert claims["role"] == "EMPLOYEE"
    assert claims["manager_id"] == str(manager.id)

    with pytest.raises(AuthenticationError):
        service.authenticate(db_session, "worker@acme.com", "nope")
    with pytest.raises(AuthenticationError):
        service.authenticate(db_session, "ghost@acme.com", "secret123")

    service.deactivate_user(db_session, _ctx(admin), employee.id)
    with pytest.raises(ForbiddenError):
        service.authenticate(db_session, "worker@acme.com", "secret123")


def test_inactive_manager_cannot_take_reports(db_session: Session, admin: User, manager: User) -> None:
    service = UsersService()
    employee = _seed(db_session, "worker@acme.com", Role.EMPLOYEE)
    service.deactivate_user(db_session, _ctx(admin), manager.id)

    with pytest.raises(ValidationError, match="assigned manager must be active"):
        service.assign_manager(db_session, _ctx(admin), employee.id, manager.id)
    with pytest.raises(ValidationError):
        service.create_user(
            db_session,
            _ctx(admin),
            UserCreate(email="late@acme.com", password="secret123", first_name="La", last_name="Te", manager_id=manager.id),
        )

    db_session.refresh(employee)
    assert employee.manager_id is None
