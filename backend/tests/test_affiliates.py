import os
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import create_engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker

os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
os.environ.setdefault("ADMIN_API_TOKEN", "admin-test-token")
os.environ["SKIP_MIGRATIONS"] = "1"

from affiliate_engine.core.affiliates import (  # noqa: E402
    build_affiliate_summary,
    change_affiliate,
    register_affiliate,
)
from affiliate_engine.core.config import settings  # noqa: E402
from affiliate_engine.core.db import Base  # noqa: E402
from affiliate_engine.core.errors import NotFoundError, ValidationFailedError  # noqa: E402
from affiliate_engine.core.fraud import create_manual_flag  # noqa: E402
from affiliate_engine.crud import affiliates as affiliates_crud  # noqa: E402
from affiliate_engine.crud.affiliates import delete_affiliate  # noqa: E402
from affiliate_engine.models.attributions import OrderAttribution  # noqa: E402
from affiliate_engine.models.clicks import Click  # noqa: E402
from affiliate_engine.models.commissions import Commission  # noqa: E402
from affiliate_engine.models.fraud import FraudFlag  # noqa: E402
from tests.factories import SHOP_ID, make_affiliate, make_click, make_commission, make_offer  # noqa: E402


def _setup_db(db_url: str):
    engine = create_engine(
        db_url,
        connect_args={"check_same_thread": False},
        future=True,
    )
    SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    Base.metadata.create_all(bind=engine)
    return SessionLocal


def test_affiliate_numbers_start_at_configured_value_per_shop():
    SessionLocal = _setup_db(f"sqlite:///./affiliates_numbers_{uuid4().hex}.db")
    with SessionLocal() as db:
        first = make_affiliate(db)
        second = make_affiliate(db)
        other_shop = make_affiliate(db, shop_id="shop-b")

        assert first.affiliate_number == settings.AFFILIATE_NUMBER_START == 30483
        assert second.affiliate_number == 30484
        assert other_shop.affiliate_number == 30483


def test_register_rejects_duplicate_email_in_same_shop():
    SessionLocal = _setup_db(f"sqlite:///./affiliates_duplicate_{uuid4().hex}.db")
    with SessionLocal() as db:
        register_affiliate(db, shop_id=SHOP_ID, name="Ana", email="ana@example.com")

        with pytest.raises(ValidationFailedError):
            register_affiliate(db, shop_id=SHOP_ID, name="Ana again", email=" ANA@example.com ")

        elsewhere = register_affiliate(db, shop_id="shop-b", name="Ana", email="ana@example.com")
        assert elsewhere.id is not None


def test_register_requires_offer_from_same_shop():
    SessionLocal = _setup_db(f"sqlite:///./affiliates_offer_scope_{uuid4().hex}.db")
    with SessionLocal() as db:
        foreign_offer = make_offer(db, shop_id="shop-b")

        with pytest.raises(NotFoundError):
            register_affiliate(db, shop_id=SHOP_ID, name="Bo", email="bo@example.com", offer_id=foreign_offer.id)


def test_change_affiliate_updates_fields_and_checks_email():
    SessionLocal = _setup_db(f"sqlite:///./affiliates_change_{uuid4().hex}.db")
    with SessionLocal() as db:
        taken = make_affiliate(db, email="taken@example.com")
        affiliate = make_affiliate(db, status="pending")

        updated = change_affiliate(
            db,
            shop_id=SHOP_ID,
            affiliate_id=affiliate.id,
            updates={"status": "active", "payout_terms_days": 14},
        )
        assert updated.status == "active"
        assert updated.payout_terms_days == 14

        with pytest.raises(ValidationFailedError):
            change_affiliate(db, shop_id=SHOP_ID, affiliate_id=affiliate.id, updates={"email": taken.email})


def test_summary_totals_commissions_by_status():
    SessionLocal = _setup_db(f"sqlite:///./affiliates_summary_{uuid4().hex}.db")
    with SessionLocal() as db:
        affiliate = make_affiliate(db, offer=make_offer(db))
        make_click(db, affiliate=affiliate)
        make_click(db, affiliate=affiliate)
        pending = make_commission(db, affiliate=affiliate, status="pending", amount="10.00")
        make_commission(db, affiliate=affiliate, status="pending", amount="2.50")
        make_commission(db, affiliate=affiliate, status="paid", amount="7.00")
        make_commission(db, affiliate=affiliate, status="reversed", amount="4.00")
        create_manual_flag(db, shop_id=SHOP_ID, commission_id=pending.id)

        summary = build_affiliate_summary(db, affiliate_id=affiliate.id)

        assert summary["clicks"] == 2
        assert summary["conversions"] == 3
        assert summary["commission_pending"] == Decimal("12.50")
        assert summary["commission_paid"] == Decimal("7.00")
        assert summary["commission_reversed"] == Decimal("4.00")
        assert summary["commission_eligible"] == Decimal("0.00")
        assert summary["unresolved_fraud_flags"] == 1


def test_deleting_an_affiliate_cascades_to_its_records():
    SessionLocal = _setup_db(f"sqlite:///./affiliates_delete_{uuid4().hex}.db")
    with SessionLocal() as db:
        affiliate = make_affiliate(db, offer=make_offer(db))
        keeper = make_affiliate(db, offer=make_offer(db))
        make_click(db, affiliate=affiliate)
        commission = make_commission(db, affiliate=affiliate)
        create_manual_flag(db, shop_id=SHOP_ID, commission_id=commission.id)
        kept = make_commission(db, affiliate=keeper)
        affiliate_id = affiliate.id

        delete_affiliate(db, affiliate=affiliate)
        db.expire_all()

        assert db.query(Click).filter(Click.affiliate_id == affiliate_id).count() == 0
        assert db.query(Commission).filter(Commission.affiliate_id == affiliate_id).count() == 0
        assert db.query(FraudFlag).count() == 0
        assert db.query(OrderAttribution).filter(OrderAttribution.affiliate_id == affiliate_id).count() == 0
        assert [row.id for row in db.query(Commission).all()] == [kept.id]


def test_registrations_racing_for_a_number_end_up_distinct(monkeypatch):
    SessionLocal = _setup_db(f"sqlite:///./affiliates_race_{uuid4().hex}.db")
    original = affiliates_crud._next_affiliate_number
    raced = []

    def next_number_with_a_rival(db, *, shop_id):
        number = original(db, shop_id=shop_id)
        if not raced:
            # Another session commits the same number between our read and our insert.
            raced.append(number)
            with SessionLocal() as rival:
                raced.append(register_affiliate(rival, shop_id=shop_id, name="Bea", email="bea@example.com"))
        return number

    monkeypatch.setattr(affiliates_crud, "_next_affiliate_number", next_number_with_a_rival)
    with SessionLocal() as db:
        ana = register_affiliate(db, shop_id=SHOP_ID, name="Ana", email="ana@example.com")

    bea = raced[1]
    assert raced[0] == bea.affiliate_number == settings.AFFILIATE_NUMBER_START
    assert ana.affiliate_number == settings.AFFILIATE_NUMBER_START + 1


class _DriverError(Exception):
    def __init__(self, pgcode):
        super().__init__(pgcode)
        self.pgcode = pgcode


def _failing_commit(db, *, pgcode, times):
    real_commit = db.commit
    failures = []

    def commit():
        if db.new and len(failures) < times:
            failures.append(pgcode)
            raise OperationalError("INSERT INTO affiliates", {}, _DriverError(pgcode))
        real_commit()

    return commit, failures


def test_serialization_failures_are_retried_with_a_fresh_number(monkeypatch):
    SessionLocal = _setup_db(f"sqlite:///./affiliates_serializable_{uuid4().hex}.db")
    with SessionLocal() as db:
        commit, failures = _failing_commit(db, pgcode=affiliates_crud.SERIALIZATION_FAILURE, times=1)
        monkeypatch.setattr(db, "commit", commit)

        affiliate = register_affiliate(db, shop_id=SHOP_ID, name="Ana", email="ana@example.com")

        assert failures == ["40001"]
        assert affiliate.affiliate_number == settings.AFFILIATE_NUMBER_START


def test_other_operational_errors_and_exhausted_retries_propagate(monkeypatch):
    SessionLocal = _setup_db(f"sqlite:///./affiliates_operational_{uuid4().hex}.db")
    with SessionLocal() as db:
        commit, failures = _failing_commit(db, pgcode="57014", times=1)
        monkeypatch.setattr(db, "commit", commit)
        with pytest.raises(OperationalError):
            register_affiliate(db, shop_id=SHOP_ID, name="Ana", email="ana@example.com")
        assert failures == ["57014"]

    with SessionLocal() as db:
        retries = settings.AFFILIATE_NUMBER_MAX_RETRIES
        commit, failures = _failing_commit(db, pgcode=affiliates_crud.SERIALIZATION_FAILURE, times=retries)
        monkeypatch.setattr(db, "commit", commit)
        with pytest.raises(OperationalError):
            register_affiliate(db, shop_id=SHOP_ID, name="Ana", email="ana@example.com")
        assert len(failures) == retries
