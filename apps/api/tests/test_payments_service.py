from __future__ import annotations

import threading
import uuid
from collections.abc import Generator
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from salescrm import audit, events
from salescrm.business.payments.models import Payment, PaymentSequence
from salescrm.business.payments.numbering import next_payment_number, parse_payment_number
from salescrm.business.payments.schemas import PaymentCreate, PaymentUpdate
from salescrm.business.payments.service import PaymentsService
from salescrm.business.users.models import User
from salescrm.core.database import Base
from salescrm.crm.enums import Role
from salescrm.crm.models import Customer
from salescrm.platform.security.context import AuthContext
from salescrm.platform.security.errors import NotFoundError, ValidationError
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


def _admin(session: Session) -> AuthContext:
    user = User(
        email=f"admin-{uuid.uuid4().hex[:6]}@acme.com",
        password_hash="not-used",
        first_name="Ada",
        last_name="Admin",
        role=Role.SUPER_ADMIN.value,
    )
    session.add(user)
    session.commit()
    return AuthContext(user_id=user.id, role=Role.SUPER_ADMIN, correlation_id="corr-payments")


def _external(amount: str = "1000", **overrides) -> PaymentCreate:
    values = {
        "reference_type": "EXTERNAL",
        "customer_name": "Walk-in Buyer",
        "amount": Decimal(amount),
        "gst_type": "WITH_GST",
        "gst_percentage": Decimal("18"),
        "payment_method": "UPI",
    }
    values.update(overrides)
    return PaymentCreate(**values)


def test_create_payment_computes_gst_and_number(db_session: Session) -> None:
    service = PaymentsService()
    ctx = _admin(db_session)

    payment = service.create_payment(db_session, ctx, _external())

    assert payment.payment_number == "PAY-0001"
    assert payment.gst_amount == Decimal("180.00")
    assert payment.total_amount == Decimal("1180.00")
    assert payment.created_by_id == ctx.user_id

    created = [item for item in events.published_events if item["event_type"] == "payments.payment.created"]
    assert created and created[-1]["payment_number"] == "PAY-0001"
    assert audit.audit_entries[-1]["correlation_id"] == "corr-payments"


def test_payment_numbers_are_sequential_and_never_reused(db_session: Session) -> None:
    service = PaymentsService()
    ctx = _admin(db_session)

    first = service.create_payment(db_session, ctx, _external("10"))
    second = service.create_payment(db_session, ctx, _external("20"))
    service.delete_payment(db_session, ctx, second.id)
    third = service.create_payment(db_session, ctx, _external("30"))

    assert [first.payment_number, second.payment_number, third.payment_number] == ["PAY-0001", "PAY-0002", "PAY-0003"]


def test_payment_sequence_seeds_from_existing_numbers(db_session: Session) -> None:
    ctx = _admin(db_session)
    db_session.add(
        Payment(
            payment_number="PAY-0041",
            reference_type="EXTERNAL",
            customer_name="Legacy",
            amount=Decimal("1"),
            gst_type="WITHOUT_GST",
            gst_percentage=Decimal("18"),
            gst_amount=Decimal("0"),
            total_amount=Decimal("1"),
            payment_method="CASH",
            created_by_id=ctx.user_id,
        )
    )
    db_session.commit()

    assert next_payment_number(db_session) == "PAY-0042"
    db_session.commit()
    assert db_session.get(PaymentSequence, "payment_number").last_value == 42
    assert parse_payment_number("PAY-0042") == 42


def test_internal_payment_requires_customer(db_session: Session) -> None:
    service = PaymentsService()
    ctx = _admin(db_session)

    with pytest.raises(ValidationError, match="Customer ID is required for internal reference type"):
        service.create_payment(db_session, ctx, _external(reference_type="INTERNAL", customer_name=None))

    with pytest.raises(NotFoundError):
        service.create_payment(db_session, ctx, _external(reference_type="INTERNAL", customer_id=uuid.uuid4()))

    assert db_session.scalars(select(Payment)).all() == []


def test_external_payment_requires_customer_name(db_session: Session) -> None:
    service = PaymentsService()
    ctx = _admin(db_session)

    with pytest.raises(ValidationError, match="Customer name is required for external reference type"):
        service.create_payment(db_session, ctx, _external(customer_name="  "))


def test_internal_payment_links_existing_customer(db_session: Session) -> None:
    service = PaymentsService()
    ctx = _admin(db_session)
    customer = Customer(first_name="Ravi", last_name="Kumar", company="Kumar Traders")
    db_session.add(customer)
    db_session.commit()

    payment = service.create_payment(
        db_session,
        ctx,
        _external("500", reference_type="INTERNAL", customer_id=customer.id, customer_name=None, gst_type="WITHOUT_GST"),
    )
    assert payment.customer_id == customer.id
    assert payment.gst_amount == Decimal("0.00")
    assert payment.total_amount == Decimal("500.00")


def test_update_payment_recomputes_gst(db_session: Session) -> None:
    service = PaymentsService()
    ctx = _admin(db_session)
    payment = service.create_payment(db_session, ctx, _external())

    updated = service.update_payment(db_session, ctx, payment.id, PaymentUpdate(amount=Decimal("2000")))
    assert updated.gst_amount == Decimal("360.00")
    assert updated.total_amount == Decimal("2360.00")
    assert updated.payment_number == payment.payment_number

    untaxed = service.update_payment(db_session, ctx, payment.id, PaymentUpdate(gst_type="WITHOUT_GST"))
    assert untaxed.gst_amount == Decimal("0.00")
    assert untaxed.total_amount == Decimal("2000.00")

    renamed = service.update_payment(db_session, ctx, payment.id, PaymentUpdate(notes="settled"))
    assert renamed.total_amount == Decimal("2000.00")


def test_update_payment_validates_merged_reference(db_session: Session) -> None:
    service = PaymentsService()
    ctx = _admin(db_session)
    payment = service.create_payment(db_session, ctx, _external())

    with pytest.raises(ValidationError):
        service.update_payment(db_session, ctx, payment.id, PaymentUpdate(reference_type="INTERNAL"))


def test_list_payments_filters_and_search(db_session: Session) -> None:
    service = PaymentsService()
    ctx = _admin(db_session)
    service.create_payment(db_session, ctx, _external("100", customer_name="Alpha Stores", payment_method="CASH"))
    service.create_payment(db_session, ctx, _external("200", customer_name="Beta Mart", payment_method="CARD"))

    assert [row.customer_name for row in service.list_payments(db_session, ctx, search="beta")] == ["Beta Mart"]
    assert len(service.list_payments(db_session, ctx, payment_method="CASH")) == 1
    assert len(service.list_payments(db_session, ctx, search="PAY-000")) == 2


def test_payment_stats(db_session: Session) -> None:
    service = PaymentsService()
    ctx = _admin(db_session)
    now = datetime(2026, 6, 10, 12, tzinfo=timezone.utc)
    service.create_payment(db_session, ctx, _external("1000", payment_date=now, payment_method="CASH"))
    service.create_payment(
        db_session,
        ctx,
        _external("500", payment_date=datetime(2026, 6, 1, tzinfo=timezone.utc), gst_type="WITHOUT_GST"),
    )

    stats = service.payment_stats(db_session, ctx, now=now)

    assert stats.total_payments == 2
    assert stats.total_amount == Decimal("1680.00")
    assert stats.today_payments == 1
    assert stats.today_amount == Decimal("1180.00")
    assert stats.by_method["CASH"].count == 1
    assert stats.by_method["CHEQUE"].count == 0
    assert stats.by_gst_type["WITH_GST"].gst_amount == Decimal("180.00")
    assert stats.by_gst_type["WITHOUT_GST"].total_amount == Decimal("500.00")


def test_concurrent_payment_creation_never_duplicates_numbers(tmp_path: Path) -> None:
    engine = create_engine(
        f"sqlite+pysqlite:///{tmp_path / 'payments.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(bind=engine)
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)

    with SessionLocal() as setup:
        ctx = _admin(setup)

    service = PaymentsService()
    barrier = threading.Barrier(4)
    numbers: list[str] = []
    failures: list[BaseException] = []
    lock = threading.Lock()

    def create() -> None:
        with SessionLocal() as session:
            barrier.wait()
            try:
                payment = service.create_payment(session, ctx, _external("99"))
            except BaseException as exc:  # collected and asserted below
                with lock:
                    failures.append(exc)
                return
            with lock:
                numbers.append(payment.payment_number)

    threads = [threading.Thread(target=create) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    try:
        assert failures == []
        assert sorted(numbers) == ["PAY-0001", "PAY-0002", "PAY-0003", "PAY-0004"]
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()
